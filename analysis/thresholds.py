"""Pass/fail thresholds over aggregated metrics.

A threshold is an expression over one aggregate of one metric:

    avg<200        mean of a trend
    p(95)<=500     95th percentile of a trend
    med, min, max  other trend aggregates
    count>0        number of samples / counter total
    rate<0.01      share of passing observations of a rate metric,
                   per-second rate of a counter
    value<100      current gauge value

The overall verdict is the logical AND of every evaluated threshold.
A metric without any samples cannot be judged: its thresholds are
SKIPPED and do not fail the run.
"""

import logging
import operator
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from collectors.metrics import MetricCollector, MetricKind, percentile
from engine.errors import ConfigurationError
from engine.profiles import parse_duration

logger = logging.getLogger(__name__)

_EXPRESSION = re.compile(
    r'^\s*(?P<stat>avg|min|max|med|count|rate|value|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))'
    r'\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<bound>-?\d+(?:\.\d+)?)\s*$'
)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    '==': operator.eq,
    '!=': operator.ne,
}


class ThresholdStatus(Enum):
    """Evaluation outcome of one threshold."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Threshold:
    """A declared pass/fail predicate over one metric."""
    metric: str
    expression: str
    stat: str
    op: str
    bound: float
    pct: Optional[float] = None
    abort_on_fail: bool = False
    delay_abort_eval: float = 0.0

    def check(self, observed: float) -> bool:
        return _OPERATORS[self.op](observed, self.bound)


@dataclass
class ThresholdResult:
    """Result of evaluating one threshold."""
    threshold: Threshold
    status: ThresholdStatus
    observed: Optional[float] = None
    reason: str = ""

    @property
    def failed(self) -> bool:
        return self.status is ThresholdStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metric': self.threshold.metric,
            'expression': self.threshold.expression,
            'status': self.status.value,
            'observed': self.observed,
            'abort_on_fail': self.threshold.abort_on_fail,
            'reason': self.reason,
        }


def parse_threshold(metric: str, entry: Any) -> Threshold:
    """Parse one threshold entry.

    Args:
        metric: Metric name the threshold applies to
        entry: Either an expression string or a mapping with
            'threshold' and optional 'abort_on_fail' / 'delay_abort_eval'
            (camelCase spellings accepted)

    Raises:
        ConfigurationError: If the entry cannot be parsed
    """
    abort_on_fail = False
    delay = 0.0
    if isinstance(entry, dict):
        expression = entry.get('threshold')
        abort_on_fail = bool(entry.get('abort_on_fail', entry.get('abortOnFail', False)))
        delay = parse_duration(
            entry.get('delay_abort_eval', entry.get('delayAbortEval', 0)),
            f"{metric}.delay_abort_eval"
        )
    else:
        expression = entry

    if not isinstance(expression, str):
        raise ConfigurationError(
            f"Threshold for {metric} must be a string, got {expression!r}"
        )

    match = _EXPRESSION.match(expression)
    if not match:
        raise ConfigurationError(
            f"Invalid threshold for {metric}: {expression!r}"
        )

    pct = match.group('pct')
    stat = 'p' if pct is not None else match.group('stat')
    if pct is not None and not 0 <= float(pct) <= 100:
        raise ConfigurationError(
            f"Invalid percentile in threshold for {metric}: {expression!r}"
        )

    return Threshold(
        metric=MetricCollector.key_for(metric),
        expression=expression.strip(),
        stat=stat,
        op=match.group('op'),
        bound=float(match.group('bound')),
        pct=float(pct) if pct is not None else None,
        abort_on_fail=abort_on_fail,
        delay_abort_eval=delay,
    )


def parse_thresholds(config: Optional[Dict[str, Any]]) -> List[Threshold]:
    """Parse the `thresholds` config section.

    The section maps metric names to a single expression or a list of
    expressions / mappings.
    """
    thresholds = []
    for metric, entries in (config or {}).items():
        if not isinstance(entries, list):
            entries = [entries]
        for entry in entries:
            thresholds.append(parse_threshold(str(metric), entry))
    return thresholds


class ThresholdEvaluator:
    """Evaluates thresholds against a MetricCollector.

    Evaluation reads the collector's current state, so it can run both
    after the test (authoritative) and periodically while it is running.
    """

    def __init__(self, thresholds: List[Threshold]):
        self.thresholds = thresholds
        self.results: List[ThresholdResult] = []

    def _observe(self, threshold: Threshold, collector, window: Optional[float]):
        """Aggregate value for a threshold, or (None, reason) to skip."""
        name = collector.key_for(threshold.metric)
        kind = collector.kind_of(name)
        if kind is None:
            return None, "no samples recorded"

        if kind is MetricKind.TREND:
            values = sorted(collector.trend_values(name, window))
            if not values:
                return None, "no samples recorded"
            if threshold.stat == 'avg':
                return sum(values) / len(values), ""
            if threshold.stat == 'min':
                return values[0], ""
            if threshold.stat == 'max':
                return values[-1], ""
            if threshold.stat == 'med':
                return percentile(values, 50), ""
            if threshold.stat == 'p':
                return percentile(values, threshold.pct), ""
            if threshold.stat == 'count':
                return float(len(values)), ""
            return None, f"{threshold.stat} does not apply to trend metrics"

        entry = collector.snapshot().get(name, {})

        if kind is MetricKind.COUNTER:
            if threshold.stat in ('count', 'rate'):
                return float(entry.get(threshold.stat, 0)), ""
            return None, f"{threshold.stat} does not apply to counters"

        if kind is MetricKind.RATE:
            if not entry.get('count'):
                return None, "no samples recorded"
            if threshold.stat == 'rate':
                return entry['rate'], ""
            if threshold.stat == 'count':
                return float(entry['count']), ""
            return None, f"{threshold.stat} does not apply to rate metrics"

        if kind is MetricKind.GAUGE:
            if threshold.stat in ('value', 'min', 'max'):
                return entry.get(threshold.stat), ""
            return None, f"{threshold.stat} does not apply to gauges"

        return None, "unknown metric kind"

    def evaluate_one(
        self,
        threshold: Threshold,
        collector,
        window: Optional[float] = None
    ) -> ThresholdResult:
        observed, reason = self._observe(threshold, collector, window)
        if observed is None:
            return ThresholdResult(threshold, ThresholdStatus.SKIPPED, reason=reason)

        passed = threshold.check(observed)
        return ThresholdResult(
            threshold=threshold,
            status=ThresholdStatus.PASSED if passed else ThresholdStatus.FAILED,
            observed=observed,
        )

    def evaluate(self, collector, window: Optional[float] = None) -> List[ThresholdResult]:
        """Evaluate every threshold and remember the results.

        Args:
            collector: MetricCollector to read from
            window: Only consider trend samples of the last `window` seconds

        Returns:
            One ThresholdResult per threshold, in declaration order
        """
        self.results = [
            self.evaluate_one(t, collector, window) for t in self.thresholds
        ]
        for result in self.results:
            if result.status is ThresholdStatus.SKIPPED:
                logger.info(
                    f"Threshold {result.threshold.metric} "
                    f"{result.threshold.expression} skipped: {result.reason}"
                )
        return self.results

    @property
    def passed(self) -> bool:
        """Overall verdict of the last evaluation."""
        return not any(r.failed for r in self.results)

    def watch(
        self,
        collector,
        on_abort: Callable[[ThresholdResult], None],
        started_at: Optional[float] = None
    ) -> Callable[[], List[ThresholdResult]]:
        """Build a periodic check for abort-on-fail thresholds.

        The returned callable is meant for CollectionScheduler. Each call
        evaluates the abort-on-fail thresholds whose delay has passed and
        calls `on_abort` once for the first one that fails.
        """
        watched = [t for t in self.thresholds if t.abort_on_fail]
        start = started_at if started_at is not None else time.monotonic()
        state = {'aborted': False}

        def check() -> List[ThresholdResult]:
            elapsed = time.monotonic() - start
            results = []
            for threshold in watched:
                if elapsed < threshold.delay_abort_eval:
                    continue
                result = self.evaluate_one(threshold, collector)
                results.append(result)
                if result.failed and not state['aborted']:
                    state['aborted'] = True
                    logger.error(
                        f"Threshold {threshold.metric} {threshold.expression} "
                        f"crossed (observed {result.observed:.2f}), aborting"
                    )
                    on_abort(result)
            return results

        return check

    def get_summary(self) -> Dict[str, Any]:
        """Summary of the last evaluation."""
        by_status: Dict[str, int] = {}
        for result in self.results:
            by_status[result.status.value] = by_status.get(result.status.value, 0) + 1

        return {
            'total_thresholds': len(self.results),
            'passed_count': by_status.get('passed', 0),
            'failed_count': by_status.get('failed', 0),
            'skipped_count': by_status.get('skipped', 0),
            'verdict': 'passed' if self.passed else 'failed',
            'results': [r.to_dict() for r in self.results],
        }
