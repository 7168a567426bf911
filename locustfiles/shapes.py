"""Locust load shape that follows the configured load profiles.

Ramping profiles map directly onto Locust's user count. Locust has no
arrival-rate executor, so a constant-arrival-rate profile is
approximated by pre_allocated users that each pace their iterations
to share the requested rate between them.
"""

import math
from typing import List, Optional, Tuple

from locust import LoadTestShape

from engine.profiles import ArrivalRateProfile, LoadProfile, RampingProfile


def profile_users(profile: LoadProfile, run_time: float) -> Optional[int]:
    """Users a profile asks for at `run_time`, or None when inactive."""
    elapsed = run_time - profile.start_offset
    if elapsed < 0:
        return None

    if isinstance(profile, RampingProfile):
        target = profile.target_at(elapsed)
        if target is None:
            return None
        return int(math.floor(target + 1e-9))

    if isinstance(profile, ArrivalRateProfile):
        if elapsed >= profile.duration:
            return None
        return max(1, profile.pre_allocated)

    return None


class ProfileLoadShape(LoadTestShape):
    """Drive Locust's user count from a list of load profiles.

    Set `profiles` and `user_classes` before the test starts (the
    locustfile does this from the loaded configuration).
    """

    abstract = True
    profiles: List[LoadProfile] = []
    user_classes: list = []

    @property
    def end_time(self) -> float:
        return max(
            (p.start_offset + p.duration for p in self.profiles), default=0.0
        )

    def pacing(self) -> Optional[float]:
        """Seconds between iteration starts of one user, if paced."""
        run_time = self.get_run_time()
        for profile in self.profiles:
            if not isinstance(profile, ArrivalRateProfile):
                continue
            if profile_users(profile, run_time) is None:
                continue
            return profile.interval * max(1, profile.pre_allocated)
        return None

    def tick(self) -> Optional[Tuple]:
        """Calculate current user target based on elapsed time."""
        run_time = self.get_run_time()
        if run_time >= self.end_time:
            return None

        users = sum(
            count for count in (profile_users(p, run_time) for p in self.profiles)
            if count is not None
        )
        spawn_rate = max(1, abs(users - self.get_current_user_count()))
        return (users, spawn_rate, self.user_classes)
