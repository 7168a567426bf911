"""Survey service scenarios.

survey_participant:
    Every VU answers one fixed survey: read the survey details and
    progress with human think time in between, then submit random
    answers.

survey_journey:
    Setup lists the available surveys. Every iteration picks one at
    random, answers it, and when the survey publishes its results goes
    on to browse them: make-info, results with and without random
    filters, the participant list and one participant's answers.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from engine.errors import ConfigurationError, MalformedResponse, SetupError
from .payloads import generate_question_filters, generate_section_responses
from .steps import Branch, Compute, HttpGet, HttpPost, Scenario, Sleep, status_is

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/surveys"
SURVEY_LIST_SIZE = 5000

PARTICIPANT_SCENARIO = "survey_participant"
JOURNEY_SCENARIO = "survey_journey"

DEFAULT_PROFILES = {
    PARTICIPANT_SCENARIO: {
        'participant_ramp': {
            'executor': 'ramping-vus',
            'stages': [
                {'duration': '2m', 'target': 200},
                {'duration': '1m', 'target': 400},
                {'duration': '1m', 'target': 400},
                {'duration': '1m', 'target': 0},
            ],
        },
    },
    JOURNEY_SCENARIO: {
        'off_peak_load': {
            'executor': 'constant-arrival-rate',
            'rate': 10,
            'time_unit': '1m',
            'duration': '5m',
            'pre_allocated_vus': 2,
            'max_vus': 10,
        },
        'peak_load': {
            'executor': 'constant-arrival-rate',
            'rate': 50,
            'time_unit': '1m',
            'duration': '5m',
            'start_time': '5m',
            'pre_allocated_vus': 10,
            'max_vus': 40,
        },
    },
}

DEFAULT_THRESHOLDS = {
    PARTICIPANT_SCENARIO: {},
    JOURNEY_SCENARIO: {
        'survey_details_duration': ['avg<200'],
        'survey_progress_duration': ['avg<200'],
        'survey_response_duration': ['avg<400'],
        'survey_make_info_duration': ['avg<200'],
        'survey_result_duration': ['avg<200'],
        'survey_participant_list_duration': ['avg<200'],
    },
}

OK = status_is(200)


def fetch_survey_ids(transport, size: int = SURVEY_LIST_SIZE) -> Dict[str, Any]:
    """Setup step: list the surveys every VU may pick from.

    Raises:
        SetupError: If the list cannot be fetched or is empty
    """
    response = transport.get(f"{API_PREFIX}/list", params={'size': size})
    if response.status != 200:
        raise SetupError(f"Survey list returned status {response.status}")

    try:
        data = response.json()
    except MalformedResponse as e:
        raise SetupError(f"Survey list is not valid JSON: {e}") from e

    survey_ids = [
        survey.get('surveyId')
        for survey in (data or {}).get('surveys') or []
        if survey.get('surveyId') is not None
    ]
    if not survey_ids:
        raise SetupError("Survey list is empty, nothing to load test")

    logger.info(f"Setup found {len(survey_ids)} surveys")
    return {'survey_ids': survey_ids}


def _survey_id(state) -> Any:
    return state.data['survey_id']


def _visitor_params(state) -> Dict[str, Any]:
    return {'visitorId': state.data['visitor_id']}


def _pick_fixed_survey(survey_id):
    def pick(state):
        state.data['survey_id'] = survey_id
    return pick


def _pick_random_survey(state):
    state.data['survey_id'] = state.rng.choice(state.shared['survey_ids'])


def _prepare_answers(state):
    state.data['visitor_id'] = str(uuid.UUID(int=state.rng.getrandbits(128), version=4))
    state.data['section_responses'] = generate_section_responses(
        state.data.get('progress'), state.rng
    )


def _answers_body(state) -> Dict[str, Any]:
    return {
        'sectionResponses': state.data['section_responses'],
        'visitorId': state.data['visitor_id'],
    }


def _result_is_open(state) -> bool:
    details = state.data.get('details') or {}
    return bool(details.get('isResultOpen'))


def _random_filters_body(state) -> Dict[str, Any]:
    return {
        'questionFilters': generate_question_filters(
            state.data.get('result'), state.rng
        )
    }


def _participant_params(state) -> Dict[str, Any]:
    params = _visitor_params(state)
    participants = (state.data.get('participants') or {}).get('participants') or []
    participant_ids = [
        p.get('participantId') for p in participants
        if p.get('participantId') is not None
    ]
    if participant_ids:
        params['participantId'] = state.rng.choice(participant_ids)
    return params


def _answer_steps(think_time: bool):
    """Steps shared by both scenarios: read, answer, submit."""
    details_step = HttpGet(
        "survey details",
        lambda s: f"{API_PREFIX}/info/{_survey_id(s)}",
        metric='survey_details_duration',
        checks={"survey details fetched": OK},
        save_as='details',
    )
    progress_step = HttpGet(
        "survey progress",
        lambda s: f"{API_PREFIX}/progress/{_survey_id(s)}",
        metric='survey_progress_duration',
        checks={"survey progress fetched": OK},
        save_as='progress',
    )
    steps = [details_step]
    if think_time:
        steps.append(Sleep(0.5))
    steps.append(progress_step)
    if think_time:
        steps.append(Sleep(10))
    steps.extend([
        Compute("generate answers", _prepare_answers),
        HttpPost(
            "submit response",
            lambda s: f"{API_PREFIX}/response/fake/{_survey_id(s)}",
            metric='survey_response_duration',
            checks={"survey response submitted": OK},
            body=_answers_body,
        ),
    ])
    return steps


def build_participant_scenario(
    survey_id: Any,
    think_time_scale: float = 1.0
) -> Scenario:
    """Fixed-survey participant scenario with think time."""
    if survey_id in (None, ''):
        raise ConfigurationError(
            f"{PARTICIPANT_SCENARIO} needs a survey id (set SURVEY_ID)"
        )
    steps = [Compute("pick survey", _pick_fixed_survey(survey_id))]
    steps.extend(_answer_steps(think_time=True))
    steps.append(Sleep(0.5))
    return Scenario(
        name=PARTICIPANT_SCENARIO,
        steps=steps,
        think_time_scale=think_time_scale,
    )


def build_journey_scenario(
    think_time_scale: float = 1.0,
    list_size: int = SURVEY_LIST_SIZE
) -> Scenario:
    """Random-survey journey that also browses published results."""
    result_url = lambda s: f"{API_PREFIX}/management/result/{_survey_id(s)}"
    participants_url = lambda s: f"{API_PREFIX}/management/participants/{_survey_id(s)}"
    result_checks = {"survey result fetched": OK}
    participant_checks = {"participant list fetched": OK}

    steps = [Compute("pick survey", _pick_random_survey)]
    steps.extend(_answer_steps(think_time=False))
    steps.extend([
        Branch("results are public", _result_is_open),
        HttpGet(
            "survey details again",
            lambda s: f"{API_PREFIX}/info/{_survey_id(s)}",
            metric='survey_details_duration',
            checks={"survey details fetched": OK},
        ),
        HttpGet(
            "survey make-info",
            lambda s: f"{API_PREFIX}/make-info/{_survey_id(s)}",
            metric='survey_make_info_duration',
            checks={"survey make-info fetched": OK},
        ),
        HttpPost(
            "survey result",
            result_url,
            metric='survey_result_duration',
            checks=result_checks,
            params=_visitor_params,
            body={'questionFilters': []},
            save_as='result',
        ),
        HttpPost(
            "filtered survey result",
            result_url,
            metric='survey_result_duration',
            checks=result_checks,
            params=_visitor_params,
            body=_random_filters_body,
        ),
        HttpPost(
            "filtered survey result again",
            result_url,
            metric='survey_result_duration',
            checks=result_checks,
            params=_visitor_params,
            body=_random_filters_body,
        ),
        HttpGet(
            "participant list",
            participants_url,
            metric='survey_participant_list_duration',
            checks=participant_checks,
            params=_visitor_params,
        ),
        HttpGet(
            "participant list for answers",
            participants_url,
            metric='survey_participant_list_duration',
            checks=participant_checks,
            params=_visitor_params,
            save_as='participants',
        ),
        HttpPost(
            "participant result",
            result_url,
            metric='survey_result_duration',
            checks=result_checks,
            params=_participant_params,
            body={'questionFilters': []},
        ),
    ])

    return Scenario(
        name=JOURNEY_SCENARIO,
        steps=steps,
        setup=lambda transport: fetch_survey_ids(transport, list_size),
        think_time_scale=think_time_scale,
    )


def build_scenario(
    name: str,
    survey_id: Optional[Any] = None,
    think_time_scale: float = 1.0
) -> Scenario:
    """Build a scenario by name.

    Raises:
        ConfigurationError: Unknown scenario or missing survey id
    """
    if name == PARTICIPANT_SCENARIO:
        return build_participant_scenario(survey_id, think_time_scale)
    if name == JOURNEY_SCENARIO:
        return build_journey_scenario(think_time_scale)
    raise ConfigurationError(
        f"Unknown scenario {name!r}, expected one of: "
        f"{', '.join(sorted(DEFAULT_PROFILES))}"
    )
