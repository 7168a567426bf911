"""Tests for the Locust test lifecycle handlers."""

from types import SimpleNamespace

from analysis.thresholds import ThresholdEvaluator, parse_thresholds
from engine.orchestrator import EXIT_ERROR, EXIT_THRESHOLDS_FAILED
from locustfiles.lifecycle import report_thresholds, run_setup
from scenarios.steps import Scenario
from scenarios.survey import API_PREFIX, JOURNEY_SCENARIO, build_scenario
from tests.conftest import FakeTransport


class FakeRunner:
    def __init__(self):
        self.quit_calls = 0

    def quit(self):
        self.quit_calls += 1


def make_environment():
    return SimpleNamespace(host=None, runner=FakeRunner(), process_exit_code=None)


def survey_list(status=200, surveys=('S1', 'S2')):
    transport = FakeTransport()
    transport.route('GET', f'{API_PREFIX}/list', status=status,
                    body={'surveys': [{'surveyId': s} for s in surveys]})
    return transport


def test_setup_shares_survey_ids():
    environment = make_environment()
    shared = {}
    transport = survey_list()

    assert run_setup(environment, build_scenario(JOURNEY_SCENARIO), shared, lambda: transport)

    assert shared == {'survey_ids': ('S1', 'S2')}
    assert transport.closed
    assert environment.runner.quit_calls == 0
    assert environment.process_exit_code is None


def test_failed_setup_quits_runner():
    environment = make_environment()
    shared = {}
    transport = survey_list(status=503)

    assert not run_setup(environment, build_scenario(JOURNEY_SCENARIO), shared,
                         lambda: transport)

    assert environment.process_exit_code == EXIT_ERROR
    assert environment.runner.quit_calls == 1
    assert shared == {}
    assert transport.closed


def test_unexpected_setup_error_quits_runner():
    def setup(transport):
        raise ValueError('no surveys')

    environment = make_environment()

    assert not run_setup(environment, Scenario('s', [], setup=setup), {}, FakeTransport)
    assert environment.process_exit_code == EXIT_ERROR
    assert environment.runner.quit_calls == 1


def test_scenario_without_setup():
    environment = make_environment()
    assert run_setup(environment, Scenario('s', []), {}, FakeTransport)


class TestReportThresholds:

    def test_crossed_threshold_sets_exit_code(self, collector):
        collector.record_sample('survey_details_duration', 900)
        evaluator = ThresholdEvaluator(parse_thresholds({'survey_details_duration': 'avg<200'}))
        environment = make_environment()

        assert not report_thresholds(environment, evaluator, collector)
        assert environment.process_exit_code == EXIT_THRESHOLDS_FAILED

    def test_setup_exit_code_is_kept(self, collector):
        collector.record_sample('survey_details_duration', 900)
        evaluator = ThresholdEvaluator(parse_thresholds({'survey_details_duration': 'avg<200'}))
        environment = make_environment()
        environment.process_exit_code = EXIT_ERROR

        report_thresholds(environment, evaluator, collector)

        assert environment.process_exit_code == EXIT_ERROR

    def test_passing_thresholds(self, collector):
        collector.record_sample('survey_details_duration', 50)
        evaluator = ThresholdEvaluator(parse_thresholds({'survey_details_duration': 'avg<200'}))
        environment = make_environment()

        assert report_thresholds(environment, evaluator, collector)
        assert environment.process_exit_code is None
