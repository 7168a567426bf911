"""Scenario building blocks.

A scenario is a fixed, ordered list of steps. Each step receives the
running VU's state and returns a StepOutcome:

- HttpGet / HttpPost: one request, timed into a named metric and judged
  by a set of checks
- Sleep: think time, suspends only the calling VU
- Compute: mutates the VU-local data (parse, derive, randomize)
- Branch: ends the scenario early when its predicate is false
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import gevent

from engine.errors import MalformedResponse, NetworkError, UnexpectedStatus

logger = logging.getLogger(__name__)

Check = Callable[[Any], bool]


def status_is(expected: int) -> Check:
    """Check that passes when the response status equals `expected`."""
    def check(response) -> bool:
        return response.status == expected
    return check


@dataclass
class StepOutcome:
    """What happened when a step executed."""
    name: str
    success: bool = True
    duration_ms: float = 0.0
    payload: Any = None
    checks: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None
    fatal: bool = False
    stop: bool = False


class Step:
    """Base class for scenario steps."""

    def __init__(self, name: str, fatal: bool = False):
        self.name = name
        self.fatal = fatal

    def execute(self, state) -> StepOutcome:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


def _resolve(value, state):
    return value(state) if callable(value) else value


class HttpStep(Step):
    """Send one HTTP request and record its timing and checks.

    Args:
        name: Step name, also used in logs
        method: HTTP method
        url: Path or URL, or a callable returning one from the VU state
        metric: Trend metric that receives the request duration (ms)
        checks: Mapping of check name to predicate over the response;
            defaults to a single "status is 200" check
        body: JSON body or callable building it from the VU state
        params: Query parameters or callable building them
        save_as: Key under which the parsed JSON body is stored in
            state.data; None is stored when a check failed
        fatal: Abort the iteration when this step fails
    """

    def __init__(
        self,
        name: str,
        method: str,
        url: Union[str, Callable],
        metric: str,
        checks: Optional[Dict[str, Check]] = None,
        body: Any = None,
        params: Any = None,
        save_as: Optional[str] = None,
        fatal: bool = False
    ):
        super().__init__(name, fatal)
        self.method = method
        self.url = url
        self.metric = metric
        self.checks = checks if checks is not None else {
            f"{name} status is 200": status_is(200)
        }
        self.body = body
        self.params = params
        self.save_as = save_as

    def execute(self, state) -> StepOutcome:
        metrics = state.metrics
        url = _resolve(self.url, state)
        body = _resolve(self.body, state)
        params = _resolve(self.params, state)

        metrics.increment('http_reqs')
        try:
            response = state.transport.request(
                self.method, url, json_body=body, params=params
            )
        except NetworkError as e:
            metrics.record_rate('http_req_failed', True)
            for check_name in self.checks:
                metrics.record_rate('checks', False)
            if self.save_as:
                state.data[self.save_as] = None
            logger.warning(f"VU {state.vu_id}: {self.name} failed: {e}")
            return StepOutcome(
                name=self.name,
                success=False,
                checks={check_name: False for check_name in self.checks},
                error=str(e),
                fatal=self.fatal,
            )

        metrics.record_sample(self.metric, response.duration_ms)
        metrics.record_sample('http_req_duration', response.duration_ms)
        metrics.record_rate('http_req_failed', not response.ok)

        results = {}
        for check_name, predicate in self.checks.items():
            try:
                passed = bool(predicate(response))
            except Exception as e:
                logger.debug(f"Check {check_name!r} raised: {e}")
                passed = False
            results[check_name] = passed
            metrics.record_rate('checks', passed)
        success = all(results.values())

        outcome = StepOutcome(
            name=self.name,
            success=success,
            duration_ms=response.duration_ms,
            checks=results,
            fatal=self.fatal and not success,
        )
        if not success:
            if not response.ok:
                outcome.error = str(UnexpectedStatus(response.status, response.url))
            else:
                failed = [n for n, passed in results.items() if not passed]
                outcome.error = f"checks failed: {', '.join(failed)}"

        if self.save_as:
            payload = None
            if success:
                try:
                    payload = response.json()
                except MalformedResponse as e:
                    logger.error(f"VU {state.vu_id}: {self.name}: {e}")
                    outcome.success = False
                    outcome.error = str(e)
                    outcome.fatal = True
            state.data[self.save_as] = payload
            outcome.payload = payload

        return outcome


class HttpGet(HttpStep):
    def __init__(self, name: str, url, metric: str, **kwargs):
        super().__init__(name, 'GET', url, metric, **kwargs)


class HttpPost(HttpStep):
    def __init__(self, name: str, url, metric: str, **kwargs):
        super().__init__(name, 'POST', url, metric, **kwargs)


class Sleep(Step):
    """Think time between steps.

    `seconds` is either a fixed pause or a (min, max) range drawn
    uniformly from the VU's random generator. The pause is scaled by
    state.think_time_scale.
    """

    def __init__(self, seconds: Union[float, Tuple[float, float]], name: Optional[str] = None):
        super().__init__(name or f"sleep {seconds}")
        self.seconds = seconds

    def pause_for(self, state) -> float:
        if isinstance(self.seconds, (tuple, list)):
            low, high = self.seconds
            pause = state.rng.uniform(low, high)
        else:
            pause = float(self.seconds)
        return pause * state.think_time_scale

    def execute(self, state) -> StepOutcome:
        pause = self.pause_for(state)
        start = time.perf_counter()
        gevent.sleep(pause)
        return StepOutcome(
            name=self.name,
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )


class Compute(Step):
    """Run a function over the VU state, typically filling state.data."""

    def __init__(self, name: str, fn: Callable[[Any], None], fatal: bool = True):
        super().__init__(name, fatal)
        self.fn = fn

    def execute(self, state) -> StepOutcome:
        self.fn(state)
        return StepOutcome(name=self.name)


class Branch(Step):
    """Continue only while `predicate(state)` holds.

    A false predicate ends the scenario normally; remaining steps are
    skipped and the iteration still counts as completed.
    """

    def __init__(self, name: str, predicate: Callable[[Any], bool]):
        super().__init__(name)
        self.predicate = predicate

    def execute(self, state) -> StepOutcome:
        keep_going = bool(self.predicate(state))
        return StepOutcome(name=self.name, stop=not keep_going)


@dataclass
class Scenario:
    """A named, fixed sequence of steps run by every VU iteration.

    Attributes:
        name: Scenario name
        steps: Steps executed in order
        setup: Optional function run once before the load starts; it
            receives a transport and returns the shared data mapping
        think_time_scale: Multiplier applied to every Sleep step
    """
    name: str
    steps: List[Step]
    setup: Optional[Callable[[Any], Dict[str, Any]]] = None
    think_time_scale: float = 1.0
