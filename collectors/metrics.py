"""In-memory metric collector shared by every VU of a test run."""

import logging
import re
import statistics
import threading
import time
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r'[^A-Za-z0-9_.:\-]')

STANDARD_PERCENTILES = (90, 95, 99)


class MetricKind(Enum):
    """Kinds of metrics the collector accumulates."""
    TREND = "trend"
    COUNTER = "counter"
    RATE = "rate"
    GAUGE = "gauge"


@dataclass(frozen=True)
class MetricSample:
    """A single recorded value."""
    name: str
    value: float
    timestamp: float


def percentile(sorted_values: List[float], pct: float) -> Optional[float]:
    """Percentile with linear interpolation between closest ranks.

    Cuts the data into as many groups as the percentile needs, so
    fractional percentiles like p(99.9) are exact too.

    Args:
        sorted_values: Values in ascending order
        pct: Percentile between 0 and 100

    Returns:
        The interpolated value, or None for an empty list
    """
    if not sorted_values:
        return None
    if len(sorted_values) == 1 or pct <= 0:
        return float(sorted_values[0])
    if pct >= 100:
        return float(sorted_values[-1])

    fraction = Fraction(str(pct)) / 100
    cuts = statistics.quantiles(
        sorted_values, n=fraction.denominator, method='inclusive'
    )
    return float(cuts[fraction.numerator - 1])


def summarize_trend(values: List[float]) -> Dict[str, Any]:
    """Summary statistics for a list of trend values."""
    ordered = sorted(values)
    count = len(ordered)
    total = float(sum(ordered))
    summary = {
        'type': MetricKind.TREND.value,
        'count': count,
        'sum': total,
        'avg': total / count if count else None,
        'min': ordered[0] if count else None,
        'max': ordered[-1] if count else None,
        'med': percentile(ordered, 50),
    }
    for pct in STANDARD_PERCENTILES:
        summary[f'p{pct}'] = percentile(ordered, pct)
    return summary


class MetricCollector:
    """Accumulates samples, counters, rates and gauges for one test run.

    One instance is created per run and handed to every step and VU.
    All writes go through a single lock so the collector can be shared
    by any number of greenlets or threads. Reads return copies and are
    consistent as of the moment the lock was held.

    Metric kinds:
    - trend: individual samples (latencies), summarized with percentiles
    - counter: summed integer deltas
    - rate: share of passing boolean observations (checks, failures)
    - gauge: last observed value with min/max

    A name belongs to the kind it was first recorded as. Recording the
    same name as another kind stores it as "<kind>:<name>" instead.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._kinds: Dict[str, MetricKind] = {}
        self._samples: Dict[str, List[MetricSample]] = {}
        self._counters: Dict[str, int] = {}
        self._rates: Dict[str, List[int]] = {}
        self._gauges: Dict[str, Dict[str, float]] = {}
        self.started_at = clock()

    @staticmethod
    def key_for(name: str) -> str:
        """Name a metric is stored under.

        Characters outside letters, digits and `_.:-` become `_`, so
        `checkout latency` and `checkout_latency` are the same metric.
        """
        return _INVALID_NAME_CHARS.sub('_', str(name).strip()) or 'unnamed'

    def _resolve(self, name: str, kind: MetricKind) -> str:
        """Normalize a metric name and bind it to a kind.

        Must be called with the lock held.
        """
        key = self.key_for(name)

        bound = self._kinds.get(key)
        if bound is None:
            self._kinds[key] = kind
            return key
        if bound is kind:
            return key

        namespaced = f"{kind.value}:{key}"
        if namespaced not in self._kinds:
            logger.debug(
                f"Metric {key} is a {bound.value}, recording {kind.value} "
                f"values as {namespaced}"
            )
            self._kinds[namespaced] = kind
        return namespaced

    def record_sample(
        self,
        name: str,
        value: float,
        timestamp: Optional[float] = None
    ):
        """Append a trend sample (e.g. a latency in milliseconds)."""
        if timestamp is None:
            timestamp = self._clock()
        with self._lock:
            key = self._resolve(name, MetricKind.TREND)
            self._samples.setdefault(key, []).append(
                MetricSample(key, float(value), timestamp)
            )

    def increment(self, name: str, delta: int = 1):
        """Add delta to a counter."""
        with self._lock:
            key = self._resolve(name, MetricKind.COUNTER)
            self._counters[key] = self._counters.get(key, 0) + int(delta)

    def record_rate(self, name: str, passed: bool):
        """Record one boolean observation for a rate metric."""
        with self._lock:
            key = self._resolve(name, MetricKind.RATE)
            entry = self._rates.setdefault(key, [0, 0])
            if passed:
                entry[0] += 1
            entry[1] += 1

    def set_gauge(self, name: str, value: float):
        """Set the current value of a gauge."""
        value = float(value)
        with self._lock:
            key = self._resolve(name, MetricKind.GAUGE)
            gauge = self._gauges.get(key)
            if gauge is None:
                self._gauges[key] = {'value': value, 'min': value, 'max': value}
            else:
                gauge['value'] = value
                gauge['min'] = min(gauge['min'], value)
                gauge['max'] = max(gauge['max'], value)

    def record_result(self, result):
        """Account for one finished VU iteration.

        Args:
            result: ScenarioResult emitted by a VU runner
        """
        status = result.status.value
        with self._lock:
            now = self._clock()
            for name in ('iterations', f'iterations_{status}'):
                key = self._resolve(name, MetricKind.COUNTER)
                self._counters[key] = self._counters.get(key, 0) + 1

            outcome = 'scenario_success' if result.success else 'scenario_failure'
            key = self._resolve(outcome, MetricKind.COUNTER)
            self._counters[key] = self._counters.get(key, 0) + 1

            key = self._resolve('iteration_duration', MetricKind.TREND)
            self._samples.setdefault(key, []).append(
                MetricSample(key, result.elapsed * 1000.0, now)
            )

    def kind_of(self, name: str) -> Optional[MetricKind]:
        """Kind a metric name is bound to, or None if never recorded."""
        with self._lock:
            return self._kinds.get(self.key_for(name))

    def trend_values(
        self,
        name: str,
        window: Optional[float] = None
    ) -> List[float]:
        """Values of a trend, optionally only the last `window` seconds."""
        with self._lock:
            samples = list(self._samples.get(self.key_for(name), ()))
        if window is not None:
            cutoff = self._clock() - window
            samples = [s for s in samples if s.timestamp >= cutoff]
        return [s.value for s in samples]

    def samples(self, name: str) -> List[MetricSample]:
        """Copy of all samples recorded for a trend."""
        with self._lock:
            return list(self._samples.get(self.key_for(name), ()))

    def counter(self, name: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(self.key_for(name), 0)

    def snapshot(self, window: Optional[float] = None) -> Dict[str, Dict[str, Any]]:
        """Aggregate every metric recorded so far.

        Args:
            window: If given, trends only include samples from the last
                `window` seconds. Counters, rates and gauges are totals.

        Returns:
            Mapping of metric name to its summary dictionary
        """
        with self._lock:
            samples = {k: list(v) for k, v in self._samples.items()}
            counters = dict(self._counters)
            rates = {k: tuple(v) for k, v in self._rates.items()}
            gauges = {k: dict(v) for k, v in self._gauges.items()}
            now = self._clock()

        elapsed = max(now - self.started_at, 1e-9)
        cutoff = now - window if window is not None else None

        result: Dict[str, Dict[str, Any]] = {}
        for name, entries in samples.items():
            if cutoff is not None:
                entries = [s for s in entries if s.timestamp >= cutoff]
            result[name] = summarize_trend([s.value for s in entries])

        for name, value in counters.items():
            result[name] = {
                'type': MetricKind.COUNTER.value,
                'count': value,
                'rate': value / elapsed,
            }

        for name, (passes, total) in rates.items():
            result[name] = {
                'type': MetricKind.RATE.value,
                'passes': passes,
                'fails': total - passes,
                'count': total,
                'rate': passes / total if total else None,
            }

        for name, gauge in gauges.items():
            result[name] = {'type': MetricKind.GAUGE.value, **gauge}

        return result
