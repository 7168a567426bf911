"""Load-pattern scheduler.

The scheduler is the only component that decides how many virtual
users run and when iterations start. Each load profile gets an
executor:

- RampingVUsExecutor keeps floor(target) VUs looping over the
  scenario, where target is interpolated between stage targets.
- ConstantArrivalRateExecutor starts iterations at a fixed cadence from
  a bounded VU pool and drops the starts the pool cannot absorb.

Executors start at their profile's start_offset and run side by side.
When a profile ends, no new iterations are admitted and in-flight ones
get the profile's graceful_stop to finish. A global stop (deadline,
abort-on-fail threshold, Ctrl-C) interrupts in-flight VUs at once.
Every forced termination is reported as an INTERRUPTED iteration.
"""

import logging
import math
import random
import time
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

import gevent
from gevent import GreenletExit
from gevent.event import Event

from collectors.aggregator import CollectionScheduler
from .errors import ConfigurationError, IterationStatus, SetupError
from .profiles import ArrivalRateProfile, LoadProfile, RampingProfile
from .runner import ScenarioResult, VirtualUser

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 0.1
DEFAULT_SAMPLE_INTERVAL = 1.0
_DRAIN_POLL_INTERVAL = 0.1


@dataclass
class ExecutorStats:
    """Iteration accounting for one executor."""
    name: str
    executor: str
    requested: Optional[int] = None
    started: int = 0
    dropped: int = 0
    completed: int = 0
    aborted: int = 0
    interrupted: int = 0
    max_active: int = 0
    vus_allocated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunResult:
    """Outcome of LoadScheduler.run()."""
    started_at: float
    finished_at: float
    executors: Dict[str, ExecutorStats]
    timeline: List[Dict[str, Any]] = field(default_factory=list)
    stop_reason: Optional[str] = None
    shared: Mapping[str, Any] = field(default_factory=dict)

    @property
    def elapsed(self) -> float:
        return self.finished_at - self.started_at

    @property
    def dropped(self) -> int:
        return sum(s.dropped for s in self.executors.values())

    @property
    def interrupted(self) -> int:
        return sum(s.interrupted for s in self.executors.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'elapsed_seconds': self.elapsed,
            'stop_reason': self.stop_reason,
            'executors': {
                name: stats.to_dict() for name, stats in self.executors.items()
            },
        }


class BaseExecutor:
    """Common lifecycle of the profile executors."""

    def __init__(
        self,
        profile: LoadProfile,
        vu_factory: Callable[[], VirtualUser],
        collector=None
    ):
        self.profile = profile
        self.name = profile.name
        self.collector = collector
        self._vu_factory = vu_factory
        self._stop_event = Event()
        self.stats = ExecutorStats(name=profile.name, executor=profile.executor)
        self.running = False
        self.finished = False

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Stop admitting iterations and interrupt in-flight ones."""
        self._stop_event.set()

    def _wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True if a stop was requested."""
        if seconds <= 0:
            return self.stopped
        return self._stop_event.wait(seconds)

    def _new_vu(self) -> VirtualUser:
        vu = self._vu_factory()
        vu.listener = self._record
        self.stats.vus_allocated += 1
        return vu

    def _record(self, result: ScenarioResult):
        if result.status is IterationStatus.COMPLETED:
            self.stats.completed += 1
        elif result.status is IterationStatus.ABORTED:
            self.stats.aborted += 1
        elif result.status is IterationStatus.INTERRUPTED:
            self.stats.interrupted += 1

    def _drain(self, greenlets: List[gevent.Greenlet], grace: float):
        """Let in-flight iterations finish within `grace`, then kill them."""
        pending = [g for g in greenlets if not g.dead]
        deadline = time.monotonic() + grace
        while pending and not self.stopped:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            gevent.joinall(pending, timeout=min(remaining, _DRAIN_POLL_INTERVAL))
            pending = [g for g in pending if not g.dead]

        if pending:
            logger.info(
                f"{self.name}: interrupting {len(pending)} in-flight VU(s)"
            )
            # freshly spawned VUs must enter their iteration to report the kill
            gevent.sleep(0)
            gevent.killall(pending, exception=GreenletExit, block=True)

    def active_vus(self) -> int:
        raise NotImplementedError

    def running_vus(self) -> int:
        raise NotImplementedError

    def current_target(self) -> Optional[int]:
        return None

    def _execute(self):
        raise NotImplementedError

    def run(self):
        """Wait for the start offset, then drive the profile to its end."""
        if self.profile.start_offset > 0:
            logger.info(
                f"{self.name}: starting in {self.profile.start_offset:.1f}s"
            )
            self._wait(self.profile.start_offset)

        self.running = True
        logger.info(f"{self.name}: {self.profile.executor} executor started")
        try:
            self._execute()
        finally:
            self.running = False
            self.finished = True
            logger.info(
                f"{self.name}: finished - started={self.stats.started} "
                f"completed={self.stats.completed} aborted={self.stats.aborted} "
                f"interrupted={self.stats.interrupted} dropped={self.stats.dropped}"
            )


class RampingVUsExecutor(BaseExecutor):
    """Track a linearly interpolated number of looping VUs.

    Every tick the target is recomputed. Excess VUs (newest first) are
    retired: they finish their current iteration and stop. A retired VU
    still counts against the target, so no replacement starts while it
    runs, and it is killed at the next tick if the running count is still
    above target, or after graceful_ramp_down, whichever comes first.
    """

    def __init__(
        self,
        profile: RampingProfile,
        vu_factory: Callable[[], VirtualUser],
        collector=None,
        tick_interval: float = DEFAULT_TICK_INTERVAL
    ):
        super().__init__(profile, vu_factory, collector)
        self.tick_interval = tick_interval
        self._admitted: List[VirtualUser] = []
        self._retiring: List[VirtualUser] = []
        self._idle: List[VirtualUser] = []
        self._workers: Dict[int, gevent.Greenlet] = {}
        self._timers: List[gevent.Greenlet] = []
        self._target = 0

    def active_vus(self) -> int:
        return len(self._admitted)

    def running_vus(self) -> int:
        return len(self._workers)

    def current_target(self) -> Optional[int]:
        return self._target if self.running else None

    def _execute(self):
        start = time.monotonic()
        while not self.stopped:
            target = self.profile.target_at(time.monotonic() - start)
            if target is None:
                break
            self._scale_to(int(math.floor(target + 1e-9)))
            if self._wait(self.tick_interval):
                break

        self._target = 0
        for vu in self._admitted:
            vu.retiring = True
        self._admitted.clear()
        self._drain(list(self._workers.values()), self.profile.graceful_stop)
        gevent.killall(self._timers, block=False)
        self._timers.clear()

    def _scale_to(self, desired: int):
        self._target = desired
        self._timers = [timer for timer in self._timers if not timer.dead]

        # VUs retired on an earlier tick lose their slot first
        excess = min(len(self._workers) - desired, len(self._retiring))
        if excess > 0:
            self._interrupt_retired(self._retiring[:excess])

        while len(self._admitted) > desired:
            vu = self._admitted.pop()
            vu.retiring = True
            worker = self._workers.get(vu.vu_id)
            if worker is None:
                self._idle.append(vu)
                continue
            self._retiring.append(vu)
            self._timers.append(gevent.spawn_later(
                self.profile.graceful_ramp_down, self._kill_retired, worker
            ))

        while len(self._workers) < desired:
            vu = self._idle.pop() if self._idle else self._new_vu()
            vu.retiring = False
            self._admitted.append(vu)
            self._workers[vu.vu_id] = gevent.spawn(self._loop, vu)

        self.stats.max_active = max(self.stats.max_active, len(self._workers))

    def _interrupt_retired(self, vus: List[VirtualUser]):
        workers = [self._workers[vu.vu_id] for vu in vus if vu.vu_id in self._workers]
        logger.debug(
            f"{self.name}: running above target, killing {len(workers)} retired VU(s)"
        )
        gevent.killall(workers, exception=GreenletExit, block=True)
        for vu in vus:
            self._release(vu)

    def _kill_retired(self, worker: gevent.Greenlet):
        if not worker.dead:
            logger.debug(f"{self.name}: graceful ramp-down expired, killing VU")
            worker.kill(exception=GreenletExit, block=False)

    def _release(self, vu: VirtualUser):
        self._workers.pop(vu.vu_id, None)
        if vu in self._retiring:
            self._retiring.remove(vu)
        if vu not in self._admitted and vu not in self._idle:
            self._idle.append(vu)

    def _loop(self, vu: VirtualUser):
        try:
            while not vu.retiring and not self.stopped:
                self.stats.started += 1
                vu.run_iteration()
                # yield even when an iteration never blocked
                gevent.sleep(0)
        finally:
            if self._workers.get(vu.vu_id) is gevent.getcurrent():
                self._release(vu)


class ConstantArrivalRateExecutor(BaseExecutor):
    """Start iterations at a fixed rate from a bounded VU pool.

    pre_allocated VUs exist from the start. When a start is due and all
    of them are busy, another VU is allocated as long as the pool is
    below max_concurrency; otherwise the start is dropped and counted in
    dropped_iterations. Starts never reached because of a global stop
    are dropped as well, so started + dropped == requested.
    """

    def __init__(
        self,
        profile: ArrivalRateProfile,
        vu_factory: Callable[[], VirtualUser],
        collector=None
    ):
        super().__init__(profile, vu_factory, collector)
        self._idle: List[VirtualUser] = []
        self._running: Dict[int, gevent.Greenlet] = {}
        self._warned_pool_growth = False
        self._warned_pool_exhausted = False

    def active_vus(self) -> int:
        return len(self._running)

    def running_vus(self) -> int:
        return len(self._running)

    def _drop(self, count: int):
        if count <= 0:
            return
        self.stats.dropped += count
        if self.collector is not None:
            self.collector.increment('dropped_iterations', count)

    def _checkout(self) -> Optional[VirtualUser]:
        if self._idle:
            return self._idle.pop()
        if self.stats.vus_allocated < self.profile.max_concurrency:
            if not self._warned_pool_growth:
                logger.warning(
                    f"{self.name}: all {self.stats.vus_allocated} VUs busy, "
                    f"allocating more (max {self.profile.max_concurrency})"
                )
                self._warned_pool_growth = True
            return self._new_vu()
        if not self._warned_pool_exhausted:
            logger.warning(
                f"{self.name}: insufficient VUs, reached "
                f"{self.profile.max_concurrency} active VUs; dropping iterations"
            )
            self._warned_pool_exhausted = True
        return None

    def _execute(self):
        offsets = self.profile.start_offsets()
        self.stats.requested = len(offsets)

        for _ in range(self.profile.pre_allocated):
            self._idle.append(self._new_vu())

        start = time.monotonic()
        for index, offset in enumerate(offsets):
            self._wait(start + offset - time.monotonic())
            if self.stopped:
                self._drop(len(offsets) - index)
                break

            vu = self._checkout()
            if vu is None:
                self._drop(1)
                continue

            self.stats.started += 1
            worker = gevent.spawn(self._run_once, vu, index)
            self._running[index] = worker
            self.stats.max_active = max(self.stats.max_active, len(self._running))
        else:
            self._wait(start + self.profile.duration - time.monotonic())

        self._drain(list(self._running.values()), self.profile.graceful_stop)

    def _run_once(self, vu: VirtualUser, iteration: int):
        try:
            vu.run_iteration(iteration)
        finally:
            self._running.pop(iteration, None)
            self._idle.append(vu)


class LoadScheduler:
    """Runs the setup phase, then every load profile to completion.

    Args:
        profiles: Load profiles, each driven by its own executor
        scenario: Scenario every VU iteration executes
        collector: MetricCollector of the run
        transport_factory: Builds a new transport for each VU (and one
            for the setup phase)
        setup: Called once with a transport before any VU starts;
            defaults to the scenario's setup
        stop_deadline: Seconds after which the whole test stops and
            in-flight VUs are interrupted
        seed: Seed for the per-VU random generators
        tick_interval: Admission tick of ramping executors
        sample_interval: Interval of the VU concurrency sampling
    """

    def __init__(
        self,
        profiles: List[LoadProfile],
        scenario,
        collector,
        transport_factory: Callable[[], Any],
        setup: Optional[Callable[[Any], Optional[Dict[str, Any]]]] = None,
        stop_deadline: Optional[float] = None,
        seed: Optional[int] = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL
    ):
        if not profiles:
            raise ConfigurationError("At least one load profile is required")
        names = [p.name for p in profiles]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate profile names: {names}")
        if stop_deadline is not None and stop_deadline <= 0:
            raise ConfigurationError("stop_deadline must be > 0")

        self.profiles = profiles
        self.scenario = scenario
        self.collector = collector
        self.transport_factory = transport_factory
        self.setup = setup if setup is not None else getattr(scenario, 'setup', None)
        self.stop_deadline = stop_deadline
        self.tick_interval = tick_interval
        self.monitor = CollectionScheduler()
        self.monitor.add_collector(
            'vus', self.sample, sample_interval, self._store_sample
        )
        self.executors: List[BaseExecutor] = []
        self.timeline: List[Dict[str, Any]] = []
        self.stop_reason: Optional[str] = None
        self.shared: Mapping[str, Any] = MappingProxyType({})
        self._seed_rng = random.Random(seed)
        self._vu_seq = 0
        self._vus: List[VirtualUser] = []
        self._started: Optional[float] = None

    def run_setup(self) -> Mapping[str, Any]:
        """Run the scenario's setup function once and freeze its result.

        Raises:
            SetupError: If the setup function fails
        """
        setup = self.setup
        if setup is None:
            return MappingProxyType({})

        logger.info(f"Running setup for scenario {self.scenario.name}")
        transport = self.transport_factory()
        try:
            data = setup(transport) or {}
        except ConfigurationError:
            raise
        except Exception as e:
            raise SetupError(f"Setup failed: {e}") from e
        finally:
            close = getattr(transport, 'close', None)
            if close is not None:
                close()

        return MappingProxyType({
            key: tuple(value) if isinstance(value, list) else value
            for key, value in dict(data).items()
        })

    def _new_vu(self) -> VirtualUser:
        self._vu_seq += 1
        vu = VirtualUser(
            vu_id=self._vu_seq,
            scenario=self.scenario,
            transport=self.transport_factory(),
            collector=self.collector,
            shared=self.shared,
            rng=random.Random(self._seed_rng.getrandbits(64)),
        )
        self._vus.append(vu)
        return vu

    def _build_executor(self, profile: LoadProfile) -> BaseExecutor:
        if isinstance(profile, RampingProfile):
            return RampingVUsExecutor(
                profile, self._new_vu, self.collector,
                tick_interval=self.tick_interval
            )
        if isinstance(profile, ArrivalRateProfile):
            return ConstantArrivalRateExecutor(
                profile, self._new_vu, self.collector
            )
        raise ConfigurationError(f"Unsupported profile type: {type(profile)}")

    def sample(self) -> Dict[str, Any]:
        """Point-in-time view of VU concurrency per executor."""
        now = time.monotonic()
        executors = {}
        for executor in self.executors:
            executors[executor.name] = {
                'target': executor.current_target(),
                'active': executor.active_vus(),
                'running': executor.running_vus(),
                'allocated': executor.stats.vus_allocated,
            }
        return {
            'timestamp': time.time(),
            'elapsed': now - self._started if self._started else 0.0,
            'vus': sum(e['running'] for e in executors.values()),
            'vus_max': sum(e['allocated'] for e in executors.values()),
            'executors': executors,
        }

    def _store_sample(self, sample: Dict[str, Any]):
        self.timeline.append(sample)
        self.collector.set_gauge('vus', sample['vus'])
        self.collector.set_gauge('vus_max', sample['vus_max'])

    def stop(self, reason: str = "stopped"):
        """Stop every executor; in-flight VUs are interrupted."""
        if self.stop_reason is None:
            self.stop_reason = reason
            logger.warning(f"Stopping test: {reason}")
        for executor in self.executors:
            executor.stop()

    def run(self) -> RunResult:
        """Run setup and all profiles; blocks until everything finished.

        Raises:
            SetupError: If the setup phase fails (no VU is started)
        """
        self.shared = self.run_setup()
        self.executors = [self._build_executor(p) for p in self.profiles]

        started_at = time.time()
        self._started = time.monotonic()
        greenlets = [gevent.spawn(executor.run) for executor in self.executors]

        deadline = None
        if self.stop_deadline is not None:
            deadline = gevent.spawn_later(
                self.stop_deadline, self.stop, "stop deadline reached"
            )

        self.monitor.start()
        try:
            gevent.joinall(greenlets, raise_error=True)
        except KeyboardInterrupt:
            self.stop("interrupted by user")
            gevent.joinall(greenlets)
        except Exception:
            self.stop("internal error")
            gevent.joinall(greenlets)
            raise
        finally:
            if deadline is not None:
                deadline.kill(block=False)
            self.monitor.stop()
            self._store_sample(self.sample())
            for vu in self._vus:
                close = getattr(vu.transport, 'close', None)
                if close is not None:
                    close()

        return RunResult(
            started_at=started_at,
            finished_at=time.time(),
            executors={e.name: e.stats for e in self.executors},
            timeline=list(self.timeline),
            stop_reason=self.stop_reason,
            shared=self.shared,
        )
