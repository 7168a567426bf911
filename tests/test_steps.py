"""Tests for scenario steps."""

import time

from scenarios.steps import Branch, Compute, HttpGet, HttpPost, Sleep, status_is


class TestHttpStep:

    def test_success_records_metrics(self, transport, collector, make_state):
        transport.route('GET', '/api/v1/surveys/info/S1', body={'isResultOpen': True})
        step = HttpGet('survey details', '/api/v1/surveys/info/S1',
                       metric='survey_details_duration', save_as='details')

        state = make_state()
        outcome = step.execute(state)

        assert outcome.success
        assert outcome.duration_ms == 5.0
        assert outcome.checks == {'survey details status is 200': True}
        assert state.data['details'] == {'isResultOpen': True}
        snapshot = collector.snapshot()
        assert snapshot['http_reqs']['count'] == 1
        assert snapshot['survey_details_duration']['count'] == 1
        assert snapshot['http_req_duration']['count'] == 1
        assert snapshot['http_req_failed']['passes'] == 0
        assert snapshot['checks']['rate'] == 1.0

    def test_failed_check_continues(self, transport, collector, make_state):
        transport.route('POST', '/submit', status=500, body={'error': 'boom'})
        step = HttpPost('submit', '/submit', metric='survey_response_duration',
                        checks={'submitted': status_is(200)}, save_as='submission')

        state = make_state()
        outcome = step.execute(state)

        assert not outcome.success
        assert not outcome.fatal
        assert outcome.checks == {'submitted': False}
        assert 'Unexpected status 500' in outcome.error
        assert state.data['submission'] is None
        snapshot = collector.snapshot()
        assert snapshot['http_req_failed']['passes'] == 1
        assert snapshot['checks']['fails'] == 1
        # latency is recorded even for failed checks
        assert snapshot['survey_response_duration']['count'] == 1

    def test_fatal_step_failure(self, transport, make_state):
        step = HttpGet('missing', '/missing', metric='m', fatal=True)
        outcome = step.execute(make_state())
        assert not outcome.success
        assert outcome.fatal

    def test_network_error(self, transport, collector, make_state, network_error):
        transport.route('GET', '/down', error=network_error)
        step = HttpGet('down', '/down', metric='down_duration', save_as='down')

        state = make_state()
        outcome = step.execute(state)

        assert not outcome.success
        assert not outcome.fatal
        assert 'connection refused' in outcome.error
        assert state.data['down'] is None
        snapshot = collector.snapshot()
        assert 'down_duration' not in snapshot
        assert snapshot['http_req_failed']['passes'] == 1
        assert snapshot['checks']['fails'] == 1

    def test_malformed_json_is_fatal(self, transport, make_state):
        transport.route('GET', '/progress', body='<html>oops</html>')
        step = HttpGet('progress', '/progress', metric='m', save_as='progress')

        state = make_state()
        outcome = step.execute(state)

        assert outcome.fatal
        assert not outcome.success
        assert state.data['progress'] is None

    def test_callable_url_body_and_params(self, transport, make_state):
        transport.route('POST', r'/result/\w+', body={})
        step = HttpPost(
            'result',
            lambda s: f"/result/{s.data['survey_id']}",
            metric='m',
            body=lambda s: {'questionFilters': []},
            params=lambda s: {'visitorId': 'v1'},
        )

        step.execute(make_state(survey_id='S9'))

        call = transport.calls[-1]
        assert call.path == '/result/S9'
        assert call.json_body == {'questionFilters': []}
        assert call.params == {'visitorId': 'v1'}

    def test_raising_check_counts_as_failure(self, transport, make_state):
        transport.route('GET', '/x', body={})

        def broken(response):
            raise KeyError('field')

        step = HttpGet('x', '/x', metric='m', checks={'broken': broken})
        outcome = step.execute(make_state())
        assert outcome.checks == {'broken': False}
        assert outcome.error == 'checks failed: broken'


class TestSleep:

    def test_scaled_to_zero(self, make_state):
        start = time.monotonic()
        Sleep(10).execute(make_state(think_time_scale=0))
        assert time.monotonic() - start < 0.5

    def test_range_uses_rng(self, make_state):
        state = make_state(think_time_scale=0.01)
        pause = Sleep((1, 2)).pause_for(state)
        assert 0.01 <= pause <= 0.02

    def test_pauses(self, make_state):
        outcome = Sleep(0.05).execute(make_state())
        assert outcome.success
        assert outcome.duration_ms >= 40


class TestComputeAndBranch:

    def test_compute_mutates_data(self, make_state):
        state = make_state()
        Compute('pick', lambda s: s.data.update(survey_id='S1')).execute(state)
        assert state.data['survey_id'] == 'S1'

    def test_branch(self, make_state):
        open_results = Branch('open', lambda s: s.data.get('open', False))
        assert open_results.execute(make_state(open=True)).stop is False
        outcome = open_results.execute(make_state(open=False))
        assert outcome.stop is True
        assert outcome.success is True
