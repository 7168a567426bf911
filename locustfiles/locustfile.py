"""Locust entry point for the survey load test.

Runs the same scenarios as the built-in runner, with Locust managing
users, its web UI and distributed mode. Every Locust user drives one
VirtualUser over the Locust HTTP session, so requests show up in
Locust's statistics as well as in the run's MetricCollector.

Configuration comes from the same YAML profiles as run-test.py
(LOAD_TEST_CONFIG), with BASE_URL, SURVEY_ID and SCENARIO overrides.

Usage:
    # Run with web UI
    locust -f locustfiles/locustfile.py --host http://localhost:8080

    # Run headless with a test profile
    LOAD_TEST_CONFIG=configs/test_profiles/survey_journey.yaml \
        locust -f locustfiles/locustfile.py --host http://localhost:8080 --headless
"""

import itertools
import os
import random
import sys
import time
from pathlib import Path
from types import MappingProxyType

from locust import HttpUser, events, task
from locust.exception import StopUser

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.thresholds import ThresholdEvaluator, parse_thresholds  # noqa: E402
from collectors.metrics import MetricCollector  # noqa: E402
from engine.config import load_config  # noqa: E402
from engine.orchestrator import EXIT_ERROR  # noqa: E402
from engine.profiles import parse_profiles  # noqa: E402
from engine.runner import VirtualUser  # noqa: E402
from locustfiles import lifecycle, shapes  # noqa: E402
from scenarios.survey import JOURNEY_SCENARIO, build_scenario  # noqa: E402
from scenarios.transport import HttpTransport  # noqa: E402

CONFIG = load_config(os.environ.get('LOAD_TEST_CONFIG'))
COLLECTOR = MetricCollector()
EVALUATOR = ThresholdEvaluator(parse_thresholds(CONFIG['thresholds']))
SCENARIO = build_scenario(
    CONFIG['test']['scenario'],
    survey_id=CONFIG['test'].get('survey_id'),
    think_time_scale=float(CONFIG['test']['think_time_scale']),
)
SHARED = {}

_vu_ids = itertools.count(1)


class SurveyUser(HttpUser):
    """Locust user running one VirtualUser of the configured scenario."""

    abstract = True
    host = CONFIG['http']['base_url']

    def wait_time(self):
        shape = self.environment.shape_class
        pace = shape.pacing() if shape is not None else None
        if pace is None:
            return 0
        return max(0.0, pace - (time.monotonic() - self._iteration_started))

    def on_start(self):
        # setup failed and the runner is quitting
        if self.environment.process_exit_code == EXIT_ERROR:
            raise StopUser()
        self._iteration_started = time.monotonic()
        self.vu = VirtualUser(
            vu_id=next(_vu_ids),
            scenario=SCENARIO,
            transport=HttpTransport(self.host, session=self.client),
            collector=COLLECTOR,
            shared=MappingProxyType(SHARED),
            rng=random.Random(),
        )

    @task
    def iteration(self):
        """Run the scenario once."""
        self._iteration_started = time.monotonic()
        self.vu.run_iteration()


class SurveyParticipantUser(SurveyUser):
    """Answers the fixed survey given by SURVEY_ID."""


class SurveyJourneyUser(SurveyUser):
    """Answers random surveys and browses published results."""


class ConfiguredLoadShape(shapes.ProfileLoadShape):
    """Follows the load profiles of the loaded configuration."""
    abstract = False
    profiles = parse_profiles(CONFIG['scenarios'])
    user_classes = [
        SurveyJourneyUser if SCENARIO.name == JOURNEY_SCENARIO else SurveyParticipantUser
    ]


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Run the scenario setup once before users start."""
    base_url = environment.host or CONFIG['http']['base_url']
    lifecycle.run_setup(environment, SCENARIO, SHARED, lambda: HttpTransport(base_url))


@events.quitting.add_listener
def on_quitting(environment, **kwargs):
    """Evaluate thresholds and fail the process when one is crossed."""
    lifecycle.report_thresholds(environment, EVALUATOR, COLLECTOR)
