"""Tests for the metric collector."""

import threading

import pytest

from collectors.metrics import MetricCollector, MetricKind, percentile, summarize_trend
from engine.errors import IterationStatus
from engine.runner import ScenarioResult


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPercentile:

    def test_empty_list(self):
        assert percentile([], 95) is None

    def test_single_value(self):
        assert percentile([7], 99) == 7.0

    def test_linear_interpolation(self):
        values = [10, 20, 30, 40]
        assert percentile(values, 0) == 10.0
        assert percentile(values, 50) == 25.0
        assert percentile(values, 100) == 40.0
        assert percentile(values, 90) == pytest.approx(37.0)

    def test_fractional_percentile(self):
        values = list(range(1, 1001))
        assert percentile(values, 99.9) == pytest.approx(999.001)
        assert percentile(values, 95) == pytest.approx(950.05)


class TestTrend:

    def test_summary(self):
        summary = summarize_trend([3, 1, 2, 4])
        assert summary['count'] == 4
        assert summary['sum'] == 10.0
        assert summary['avg'] == 2.5
        assert summary['min'] == 1
        assert summary['max'] == 4
        assert summary['med'] == 2.5

    def test_snapshot_contains_percentiles(self, collector):
        for value in range(1, 101):
            collector.record_sample('survey_details_duration', value)

        entry = collector.snapshot()['survey_details_duration']
        assert entry['type'] == 'trend'
        assert entry['count'] == 100
        assert entry['avg'] == pytest.approx(50.5)
        assert entry['p95'] == pytest.approx(95.05)

    def test_window_limits_samples(self):
        clock = FakeClock()
        collector = MetricCollector(clock=clock)
        collector.record_sample('latency', 1000)
        clock.now += 60
        collector.record_sample('latency', 10)

        assert collector.snapshot(window=30)['latency']['count'] == 1
        assert collector.trend_values('latency', window=30) == [10]
        assert collector.snapshot()['latency']['count'] == 2


class TestCountersRatesGauges:

    def test_counter_and_rate_per_second(self):
        clock = FakeClock()
        collector = MetricCollector(clock=clock)
        collector.increment('http_reqs')
        collector.increment('http_reqs', 9)
        clock.now += 5

        entry = collector.snapshot()['http_reqs']
        assert entry == {'type': 'counter', 'count': 10, 'rate': 2.0}
        assert collector.counter('http_reqs') == 10

    def test_rate_metric(self, collector):
        for passed in (True, True, True, False):
            collector.record_rate('checks', passed)

        entry = collector.snapshot()['checks']
        assert entry['passes'] == 3
        assert entry['fails'] == 1
        assert entry['rate'] == 0.75

    def test_gauge_tracks_min_and_max(self, collector):
        for value in (3, 10, 1, 5):
            collector.set_gauge('vus', value)

        entry = collector.snapshot()['vus']
        assert entry['value'] == 5
        assert entry['min'] == 1
        assert entry['max'] == 10


class TestNames:

    def test_invalid_characters_replaced(self, collector):
        collector.increment(' survey list/size ')
        assert collector.counter('survey_list_size') == 1

    def test_reads_use_stored_name(self, collector):
        collector.record_sample('checkout latency', 900)

        assert MetricCollector.key_for('checkout latency') == 'checkout_latency'
        assert MetricCollector.key_for('http_req_duration{status:200}') == (
            'http_req_duration_status:200_'
        )
        assert collector.kind_of('checkout latency') is MetricKind.TREND
        assert collector.trend_values('checkout latency') == [900]
        assert 'checkout_latency' in collector.snapshot()

    def test_second_kind_is_namespaced(self, collector):
        collector.increment('latency')
        collector.record_sample('latency', 12.5)

        assert collector.kind_of('latency') is MetricKind.COUNTER
        assert collector.kind_of('trend:latency') is MetricKind.TREND
        snapshot = collector.snapshot()
        assert snapshot['latency']['count'] == 1
        assert snapshot['trend:latency']['avg'] == 12.5


class TestRecordResult:

    def _result(self, status, success):
        return ScenarioResult(
            scenario='survey_participant', vu_id=1, iteration=0,
            status=status, success=success, elapsed=0.25,
        )

    def test_counts_by_status(self, collector):
        collector.record_result(self._result(IterationStatus.COMPLETED, True))
        collector.record_result(self._result(IterationStatus.COMPLETED, False))
        collector.record_result(self._result(IterationStatus.INTERRUPTED, False))

        assert collector.counter('iterations') == 3
        assert collector.counter('iterations_completed') == 2
        assert collector.counter('iterations_interrupted') == 1
        assert collector.counter('scenario_success') == 1
        assert collector.counter('scenario_failure') == 2
        assert collector.trend_values('iteration_duration') == [250.0] * 3


def test_concurrent_writes_are_not_lost(collector):
    def worker():
        for _ in range(1000):
            collector.increment('http_reqs')
            collector.record_rate('checks', True)
            collector.record_sample('http_req_duration', 1.0)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = collector.snapshot()
    assert snapshot['http_reqs']['count'] == 8000
    assert snapshot['checks']['count'] == 8000
    assert snapshot['http_req_duration']['count'] == 8000
