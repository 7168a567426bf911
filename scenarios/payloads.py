"""Randomized survey answers and result filters.

All functions take the random generator to use (a VU's own
random.Random in the engine) and never modify the data they read.
"""

import random
from typing import Any, Dict, List, Optional

SINGLE_CHOICE = "SINGLE_CHOICE"
MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
TEXT_RESPONSE = "TEXT_RESPONSE"

OPTIONAL_ANSWER_PROBABILITY = 0.7
POSITIVE_FILTER_PROBABILITY = 0.7
MAX_FILTER_QUESTIONS = 2

TEXT_RESPONSE_CONTENT = "This is a free-text response."


def _response(content: Any) -> Dict[str, Any]:
    return {'content': content, 'isOther': False}


def answer_question(
    question: Dict[str, Any],
    rng: random.Random = random
) -> List[Dict[str, Any]]:
    """Random responses for one question.

    Required questions are always answered, optional ones with
    probability OPTIONAL_ANSWER_PROBABILITY. An empty list means the
    question is left unanswered.
    """
    if not question.get('isRequired') and rng.random() >= OPTIONAL_ANSWER_PROBABILITY:
        return []

    question_type = question.get('type')
    # duplicates in the choice list would otherwise repeat content
    choices = list(dict.fromkeys(question.get('choices') or []))

    if question_type == SINGLE_CHOICE:
        if not choices:
            return []
        return [_response(rng.choice(choices))]

    if question_type == MULTIPLE_CHOICE:
        if not choices:
            return []
        count = rng.randint(1, len(choices))
        return [_response(choice) for choice in rng.sample(choices, count)]

    if question_type == TEXT_RESPONSE:
        return [_response(TEXT_RESPONSE_CONTENT)]

    return []


def generate_question_responses(
    section: Dict[str, Any],
    rng: random.Random = random
) -> List[Dict[str, Any]]:
    """Question responses for one progress section.

    Questions that end up with no responses are omitted entirely rather
    than submitted with an empty list.
    """
    question_responses = []
    for question in section.get('questions') or []:
        responses = answer_question(question, rng)
        if responses:
            question_responses.append({
                'questionId': question.get('questionId'),
                'responses': responses,
            })
    return question_responses


def generate_section_responses(
    progress: Optional[Dict[str, Any]],
    rng: random.Random = random
) -> List[Dict[str, Any]]:
    """Section responses for a whole progress payload.

    Returns an empty list when the progress payload is missing or has
    no sections.
    """
    if not progress or not progress.get('sections'):
        return []
    return [
        {
            'sectionId': section.get('sectionId'),
            'questionResponses': generate_question_responses(section, rng),
        }
        for section in progress['sections']
    ]


def generate_question_filters(
    result: Optional[Dict[str, Any]],
    rng: random.Random = random
) -> List[Dict[str, Any]]:
    """Random question filters for a survey result query.

    Picks one result section, then one or two distinct questions of it.
    Every chosen question that has recorded responses contributes one
    filter on a random response content, positive with probability
    POSITIVE_FILTER_PROBABILITY.
    """
    if not result or not result.get('sectionResults'):
        return []

    section = rng.choice(result['sectionResults'])
    questions = section.get('questionResults') or []
    if not questions:
        return []

    count = min(rng.randint(1, MAX_FILTER_QUESTIONS), len(questions))
    filters = []
    for question in rng.sample(questions, count):
        responses = question.get('responses') or []
        if not responses:
            continue
        content = rng.choice(responses).get('content')
        filters.append({
            'questionId': question.get('questionId'),
            'contents': [content],
            'isPositive': rng.random() < POSITIVE_FILTER_PROBABILITY,
        })
    return filters
