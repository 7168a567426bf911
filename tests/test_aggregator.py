"""Tests for derived metrics and the collection scheduler."""

import gevent

from collectors.aggregator import CollectionScheduler, MetricsAggregator


class TestDerive:

    def test_rates_and_percentages(self, collector):
        collector.increment('http_reqs', 40)
        collector.increment('iterations', 8)
        collector.increment('dropped_iterations', 2)
        for failed in (True, False, False, False):
            collector.record_rate('http_req_failed', failed)
        for passed in (True, True, True, False):
            collector.record_rate('checks', passed)

        derived = MetricsAggregator().derive(collector.snapshot(), elapsed_seconds=4.0)

        assert derived['requests_per_sec'] == 10.0
        assert derived['iterations_per_sec'] == 2.0
        assert derived['error_rate_pct'] == 25.0
        assert derived['check_pass_pct'] == 75.0
        assert derived['dropped_iterations'] == 2
        assert derived['dropped_pct'] == 20.0

    def test_dropped_not_counted_as_errors(self, collector):
        collector.increment('dropped_iterations', 5)
        derived = MetricsAggregator().derive(collector.snapshot(), 1.0)
        assert derived['error_rate_pct'] == 0.0
        assert derived['scenario_failure'] == 0
        assert derived['dropped_pct'] == 100.0

    def test_empty_snapshot(self):
        derived = MetricsAggregator().derive({}, 0)
        assert derived['requests_per_sec'] == 0.0
        assert derived['check_pass_pct'] is None
        assert derived['total_iterations'] == 0


class TestCollectionScheduler:

    def test_collects_until_stopped(self):
        stored = []
        ticks = iter(range(1000))
        scheduler = CollectionScheduler()
        scheduler.add_collector('ticks', lambda: next(ticks), 0.01, stored.append)

        with scheduler:
            gevent.sleep(0.1)

        count = len(stored)
        assert count >= 3
        assert stored[:3] == [0, 1, 2]
        gevent.sleep(0.05)
        assert len(stored) == count

    def test_collector_errors_do_not_stop_loop(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return len(calls)

        scheduler = CollectionScheduler()
        scheduler.add_collector('flaky', flaky, 0.01)
        scheduler.start()
        gevent.sleep(0.05)
        scheduler.stop()

        assert len(calls) >= 2
        assert scheduler.names == ['flaky']
