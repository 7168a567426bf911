"""Derived metrics and periodic collection loops."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import gevent
from gevent.event import Event

logger = logging.getLogger(__name__)


class MetricsAggregator:
    """Calculates derived metrics from a collector snapshot.

    Derived metrics:
    - Requests per second (http_reqs / elapsed)
    - Iterations per second (iterations / elapsed)
    - HTTP error rate (share of failed http_req_failed observations)
    - Check pass rate (share of passing checks)
    - Dropped share (dropped_iterations / scheduled iteration starts)

    Dropped iterations are kept apart from failures: they never count
    toward the error rate.
    """

    def derive(
        self,
        snapshot: Dict[str, Dict[str, Any]],
        elapsed_seconds: float
    ) -> Dict[str, Any]:
        """Derive rate metrics from a snapshot.

        Args:
            snapshot: Result of MetricCollector.snapshot()
            elapsed_seconds: Wall-clock length of the run

        Returns:
            Dictionary of derived values (percentages are 0-100)
        """
        def count(name: str) -> int:
            return snapshot.get(name, {}).get('count', 0) or 0

        http_reqs = count('http_reqs')
        iterations = count('iterations')
        dropped = count('dropped_iterations')

        derived = {
            'elapsed_seconds': elapsed_seconds,
            'total_requests': http_reqs,
            'total_iterations': iterations,
            'requests_per_sec': 0.0,
            'iterations_per_sec': 0.0,
            'error_rate_pct': 0.0,
            'check_pass_pct': None,
            'dropped_iterations': dropped,
            'dropped_pct': 0.0,
            'interrupted_iterations': count('iterations_interrupted'),
            'aborted_iterations': count('iterations_aborted'),
            'scenario_success': count('scenario_success'),
            'scenario_failure': count('scenario_failure'),
        }

        if elapsed_seconds > 0:
            derived['requests_per_sec'] = http_reqs / elapsed_seconds
            derived['iterations_per_sec'] = iterations / elapsed_seconds

        failed = snapshot.get('http_req_failed')
        if failed and failed.get('count'):
            derived['error_rate_pct'] = failed['passes'] / failed['count'] * 100

        checks = snapshot.get('checks')
        if checks and checks.get('count'):
            derived['check_pass_pct'] = checks['rate'] * 100

        # every started iteration ends as exactly one ScenarioResult
        scheduled = iterations + dropped
        if scheduled > 0:
            derived['dropped_pct'] = dropped / scheduled * 100

        return derived


class CollectionScheduler:
    """Schedules periodic collection from multiple sources.

    Each collector is a zero-argument callable; its return value is
    handed to the matching store function. Loops run as greenlets so
    they share the hub with the virtual users.
    """

    def __init__(self):
        self._collectors: Dict[str, Dict] = {}
        self._stop_event = Event()
        self._greenlets: List[gevent.Greenlet] = []

    def add_collector(
        self,
        name: str,
        collector: Callable[[], Any],
        interval: float,
        store_func: Optional[Callable[[Any], None]] = None
    ):
        """Add a collector to the scheduler.

        Args:
            name: Unique name for this collector
            collector: Callable returning the collected data
            interval: Collection interval in seconds
            store_func: Function to call with collected data
        """
        self._collectors[name] = {
            'collector': collector,
            'interval': interval,
            'store_func': store_func
        }

    @property
    def names(self) -> List[str]:
        return list(self._collectors)

    def _collection_loop(self, name: str, config: Dict):
        """Collection loop for a single collector."""
        collector = config['collector']
        interval = config['interval']
        store_func = config['store_func']

        while not self._stop_event.is_set():
            start_time = time.monotonic()
            try:
                data = collector()
                if store_func is not None:
                    store_func(data)
            except Exception as e:
                logger.error(f"Collection error in {name}: {e}")

            elapsed = time.monotonic() - start_time
            self._stop_event.wait(max(0, interval - elapsed))

    def start(self):
        """Start all collection loops."""
        self._stop_event.clear()

        for name, config in self._collectors.items():
            greenlet = gevent.spawn(self._collection_loop, name, config)
            greenlet.name = f"collector-{name}"
            self._greenlets.append(greenlet)
            logger.debug(f"Started collector: {name}")

    def stop(self, timeout: float = 5.0):
        """Stop all collection loops.

        Args:
            timeout: Maximum time to wait for loops to stop
        """
        self._stop_event.set()

        gevent.joinall(self._greenlets, timeout=timeout)
        for greenlet in self._greenlets:
            if not greenlet.dead:
                logger.warning(f"{greenlet.name} did not stop cleanly")
                greenlet.kill(block=False)

        self._greenlets.clear()
        logger.debug("All collectors stopped")

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.stop()
        return False
