"""Declarative load profiles.

Two kinds of profile control how iterations are started:

RampingProfile:
    A list of stages, each a (duration, target) pair. The number of
    concurrently looping VUs is interpolated linearly from the previous
    stage's target to the current one over the stage duration.

ArrivalRateProfile:
    A fixed number of iteration starts per time unit for a fixed
    duration, independent of how long each iteration takes. A pool of
    between pre_allocated and max_concurrency VUs absorbs slow
    iterations; starts that find the pool exhausted are dropped.

Both may be delayed by a start_offset so several profiles can run as
time-shifted phases of one test.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigurationError

DEFAULT_GRACEFUL_STOP = 30.0
DEFAULT_GRACEFUL_RAMP_DOWN = 30.0

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|h|m|s)')
_UNIT_SECONDS = {'ms': 0.001, 's': 1.0, 'm': 60.0, 'h': 3600.0}

EXECUTOR_RAMPING_VUS = 'ramping-vus'
EXECUTOR_CONSTANT_ARRIVAL_RATE = 'constant-arrival-rate'


def parse_duration(value: Union[str, int, float, None], field_name: str = "duration") -> float:
    """Convert a duration to seconds.

    Accepts plain numbers (seconds) and strings such as "500ms", "30s",
    "5m", "1h" or "1m30s".

    Raises:
        ConfigurationError: If the value cannot be parsed or is negative
    """
    if isinstance(value, bool) or value is None:
        raise ConfigurationError(f"Missing or invalid {field_name}: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or ''.join(n + u for n, u in parts) != text:
                raise ConfigurationError(
                    f"Invalid {field_name}: {value!r}"
                ) from None
            seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)

    if seconds < 0:
        raise ConfigurationError(f"{field_name} must be >= 0, got {value!r}")
    return seconds


@dataclass(frozen=True)
class Stage:
    """One ramping stage."""
    duration: float
    target: int


@dataclass
class RampingProfile:
    """Ramp the number of looping VUs through a list of stages."""
    name: str
    stages: List[Stage]
    start_vus: int = 0
    start_offset: float = 0.0
    graceful_ramp_down: float = DEFAULT_GRACEFUL_RAMP_DOWN
    graceful_stop: float = DEFAULT_GRACEFUL_STOP

    executor = EXECUTOR_RAMPING_VUS

    def __post_init__(self):
        if not self.stages:
            raise ConfigurationError(f"Profile {self.name}: no stages defined")
        if self.start_vus < 0:
            raise ConfigurationError(
                f"Profile {self.name}: start_vus must be >= 0"
            )
        for stage in self.stages:
            if stage.duration < 0:
                raise ConfigurationError(
                    f"Profile {self.name}: stage duration must be >= 0"
                )
            if stage.target < 0:
                raise ConfigurationError(
                    f"Profile {self.name}: stage target must be >= 0"
                )
        _check_non_negative(self.name, 'start_offset', self.start_offset)
        _check_non_negative(self.name, 'graceful_stop', self.graceful_stop)
        _check_non_negative(
            self.name, 'graceful_ramp_down', self.graceful_ramp_down
        )

    @property
    def duration(self) -> float:
        """Total length of all stages in seconds."""
        return sum(stage.duration for stage in self.stages)

    @property
    def max_vus(self) -> int:
        """Largest number of VUs any point of the ramp asks for."""
        return max([self.start_vus] + [s.target for s in self.stages])

    def target_at(self, elapsed: float) -> Optional[float]:
        """Interpolated VU target at `elapsed` seconds into the profile.

        Returns:
            The (fractional) target, or None once every stage has ended
        """
        if elapsed < 0:
            return float(self.start_vus)

        previous = float(self.start_vus)
        stage_start = 0.0
        for stage in self.stages:
            stage_end = stage_start + stage.duration
            if elapsed < stage_end:
                progress = (elapsed - stage_start) / stage.duration
                return previous + (stage.target - previous) * progress
            previous = float(stage.target)
            stage_start = stage_end

        return None


@dataclass
class ArrivalRateProfile:
    """Start `rate` iterations every `time_unit` seconds for `duration`."""
    name: str
    rate: float
    duration: float
    time_unit: float = 1.0
    pre_allocated: int = 1
    max_concurrency: Optional[int] = None
    start_offset: float = 0.0
    graceful_stop: float = DEFAULT_GRACEFUL_STOP

    executor = EXECUTOR_CONSTANT_ARRIVAL_RATE

    def __post_init__(self):
        if self.max_concurrency is None:
            self.max_concurrency = self.pre_allocated
        if self.rate < 0:
            raise ConfigurationError(f"Profile {self.name}: rate must be >= 0")
        if self.time_unit <= 0:
            raise ConfigurationError(
                f"Profile {self.name}: time_unit must be > 0"
            )
        if self.pre_allocated < 0:
            raise ConfigurationError(
                f"Profile {self.name}: pre_allocated must be >= 0"
            )
        if self.max_concurrency < self.pre_allocated:
            raise ConfigurationError(
                f"Profile {self.name}: max_concurrency ({self.max_concurrency}) "
                f"must be >= pre_allocated ({self.pre_allocated})"
            )
        _check_non_negative(self.name, 'duration', self.duration)
        _check_non_negative(self.name, 'start_offset', self.start_offset)
        _check_non_negative(self.name, 'graceful_stop', self.graceful_stop)

    @property
    def max_vus(self) -> int:
        return self.max_concurrency

    @property
    def interval(self) -> float:
        """Seconds between two consecutive iteration starts."""
        if self.rate == 0:
            return math.inf
        return self.time_unit / self.rate

    @property
    def requested_iterations(self) -> int:
        """Number of iteration starts the profile schedules."""
        # epsilon keeps 10/min over 60s at exactly 10
        return int(math.floor(self.rate * self.duration / self.time_unit + 1e-9))

    def start_offsets(self) -> List[float]:
        """Offsets (seconds from profile start) of every scheduled start."""
        interval = self.interval
        return [i * interval for i in range(self.requested_iterations)]


LoadProfile = Union[RampingProfile, ArrivalRateProfile]


def _check_non_negative(profile: str, name: str, value: float):
    if value < 0:
        raise ConfigurationError(f"Profile {profile}: {name} must be >= 0")


def _get(config: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among snake_case and camelCase spellings."""
    for key in keys:
        if key in config:
            return config[key]
    return default


def _as_int(profile: str, name: str, value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Profile {profile}: {name} must be a number, got {value!r}"
        ) from None
    if number != int(number):
        raise ConfigurationError(
            f"Profile {profile}: {name} must be a whole number, got {value!r}"
        )
    return int(number)


def parse_profile(name: str, config: Dict[str, Any]) -> LoadProfile:
    """Build a profile from one entry of the `scenarios` config section.

    Keys follow k6 naming; both snake_case and camelCase are accepted.

    Raises:
        ConfigurationError: On unknown executors or invalid values
    """
    if not isinstance(config, dict):
        raise ConfigurationError(f"Profile {name}: expected a mapping")

    executor = config.get('executor')
    if executor is None:
        executor = EXECUTOR_RAMPING_VUS if 'stages' in config \
            else EXECUTOR_CONSTANT_ARRIVAL_RATE

    start_offset = parse_duration(
        _get(config, 'start_time', 'startTime', 'start_offset', default=0),
        f"{name}.start_time"
    )
    graceful_stop = parse_duration(
        _get(config, 'graceful_stop', 'gracefulStop',
             default=DEFAULT_GRACEFUL_STOP),
        f"{name}.graceful_stop"
    )

    if executor == EXECUTOR_RAMPING_VUS:
        raw_stages = config.get('stages') or []
        if not isinstance(raw_stages, list):
            raise ConfigurationError(f"Profile {name}: stages must be a list")
        stages = []
        for index, raw in enumerate(raw_stages):
            if not isinstance(raw, dict):
                raise ConfigurationError(
                    f"Profile {name}: stage {index} must be a mapping"
                )
            stages.append(Stage(
                duration=parse_duration(
                    raw.get('duration'), f"{name}.stages[{index}].duration"
                ),
                target=_as_int(name, f"stages[{index}].target", raw.get('target')),
            ))
        return RampingProfile(
            name=name,
            stages=stages,
            start_vus=_as_int(
                name, 'start_vus', _get(config, 'start_vus', 'startVUs', default=0)
            ),
            start_offset=start_offset,
            graceful_ramp_down=parse_duration(
                _get(config, 'graceful_ramp_down', 'gracefulRampDown',
                     default=DEFAULT_GRACEFUL_RAMP_DOWN),
                f"{name}.graceful_ramp_down"
            ),
            graceful_stop=graceful_stop,
        )

    if executor == EXECUTOR_CONSTANT_ARRIVAL_RATE:
        rate = _get(config, 'rate')
        try:
            rate = float(rate)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Profile {name}: rate must be a number, got {rate!r}"
            ) from None
        pre_allocated = _as_int(
            name, 'pre_allocated',
            _get(config, 'pre_allocated', 'pre_allocated_vus', 'preAllocatedVUs',
                 default=1)
        )
        max_vus = _get(config, 'max_concurrency', 'max_vus', 'maxVUs')
        return ArrivalRateProfile(
            name=name,
            rate=rate,
            duration=parse_duration(config.get('duration'), f"{name}.duration"),
            time_unit=parse_duration(
                _get(config, 'time_unit', 'timeUnit', default=1),
                f"{name}.time_unit"
            ),
            pre_allocated=pre_allocated,
            max_concurrency=(
                _as_int(name, 'max_concurrency', max_vus)
                if max_vus is not None else None
            ),
            start_offset=start_offset,
            graceful_stop=graceful_stop,
        )

    raise ConfigurationError(f"Profile {name}: unknown executor {executor!r}")


def parse_profiles(config: Dict[str, Any]) -> List[LoadProfile]:
    """Build every profile of a `scenarios` section, in declaration order."""
    if not config:
        raise ConfigurationError("No load profiles defined")
    if not isinstance(config, dict):
        raise ConfigurationError("scenarios must be a mapping of name to profile")
    return [parse_profile(str(name), entry) for name, entry in config.items()]
