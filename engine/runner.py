"""Virtual user runner.

A VirtualUser is a long-lived task object owned by an executor. Each
call to run_iteration() walks the scenario once with fresh state:

    INIT -> RUNNING(step) -> COMPLETED | ABORTED | INTERRUPTED

Exactly one ScenarioResult is reported to the metric collector for
every iteration, whatever the exit path. Failed steps are recorded,
never retried.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from gevent import GreenletExit

from .errors import IterationStatus

logger = logging.getLogger(__name__)


class VUPhase(Enum):
    """Lifecycle phase of a virtual user."""
    INIT = "init"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    INTERRUPTED = "interrupted"


@dataclass
class VUState:
    """State of one VU iteration, owned by the runner executing it."""
    vu_id: int
    iteration: int
    transport: Any
    metrics: Any
    rng: random.Random
    shared: Mapping[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    cursor: int = 0
    think_time_scale: float = 1.0


@dataclass
class ScenarioResult:
    """Terminal record of one VU iteration."""
    scenario: str
    vu_id: int
    iteration: int
    status: IterationStatus
    success: bool
    elapsed: float
    outcomes: List[Any] = field(default_factory=list)
    error: Optional[str] = None


class VirtualUser:
    """One simulated client executing a scenario.

    Args:
        vu_id: Identifier unique within the run
        scenario: Scenario to execute
        transport: HTTP transport owned by this VU
        collector: MetricCollector of the run
        shared: Read-only setup data
        rng: Random generator owned by this VU
    """

    def __init__(
        self,
        vu_id: int,
        scenario,
        transport,
        collector,
        shared: Optional[Mapping[str, Any]] = None,
        rng: Optional[random.Random] = None
    ):
        self.vu_id = vu_id
        self.scenario = scenario
        self.transport = transport
        self.collector = collector
        self.shared = shared if shared is not None else {}
        self.rng = rng or random.Random()
        self.phase = VUPhase.INIT
        self.iterations = 0
        self.retiring = False
        self.last_result: Optional[ScenarioResult] = None
        self.listener: Optional[Callable[[ScenarioResult], None]] = None

    @property
    def busy(self) -> bool:
        return self.phase is VUPhase.RUNNING

    def run_iteration(self, iteration: Optional[int] = None) -> ScenarioResult:
        """Execute the scenario once.

        Raises:
            GreenletExit: Re-raised after reporting an INTERRUPTED result
                when the executor kills this VU
        """
        if iteration is None:
            iteration = self.iterations
        self.iterations += 1

        state = VUState(
            vu_id=self.vu_id,
            iteration=iteration,
            transport=self.transport,
            metrics=self.collector,
            rng=self.rng,
            shared=self.shared,
            think_time_scale=self.scenario.think_time_scale,
        )
        outcomes = []
        status = IterationStatus.COMPLETED
        error = None

        self.phase = VUPhase.RUNNING
        start = time.monotonic()
        try:
            for index, step in enumerate(self.scenario.steps):
                state.cursor = index
                outcome = step.execute(state)
                outcomes.append(outcome)

                if outcome.fatal:
                    status = IterationStatus.ABORTED
                    error = outcome.error or f"{step.name} failed"
                    logger.debug(
                        f"VU {self.vu_id} iteration {iteration} aborted "
                        f"at {step.name}: {error}"
                    )
                    break
                if outcome.stop:
                    break
        except GreenletExit:
            self._finish(
                state, IterationStatus.INTERRUPTED, outcomes, start,
                f"interrupted at step {state.cursor}"
            )
            raise
        except Exception as e:
            status = IterationStatus.ABORTED
            error = f"{type(e).__name__}: {e}"
            logger.warning(
                f"VU {self.vu_id} iteration {iteration} aborted: {error}"
            )

        return self._finish(state, status, outcomes, start, error)

    def _finish(
        self,
        state: VUState,
        status: IterationStatus,
        outcomes: List[Any],
        start: float,
        error: Optional[str]
    ) -> ScenarioResult:
        success = (
            status is IterationStatus.COMPLETED
            and all(o.success for o in outcomes)
        )
        result = ScenarioResult(
            scenario=self.scenario.name,
            vu_id=self.vu_id,
            iteration=state.iteration,
            status=status,
            success=success,
            elapsed=time.monotonic() - start,
            outcomes=outcomes,
            error=error,
        )
        self.phase = VUPhase(status.value)
        self.last_result = result
        self.collector.record_result(result)
        if self.listener is not None:
            self.listener(result)
        return result
