"""Tests for the Locust load shape."""

from engine.profiles import ArrivalRateProfile, RampingProfile, Stage
from locustfiles.shapes import ProfileLoadShape, profile_users

RAMP = RampingProfile('ramp', [Stage(10, 10), Stage(10, 0)])
PEAK = ArrivalRateProfile('peak', rate=60, time_unit=60, duration=30,
                          start_offset=20, pre_allocated=3)


class ScriptedShape(ProfileLoadShape):
    profiles = [RAMP, PEAK]
    user_classes = []

    def __init__(self):
        self.now = 0.0
        self.current = 0

    def get_run_time(self):
        return self.now

    def get_current_user_count(self):
        return self.current


def test_profile_users():
    assert profile_users(RAMP, 5) == 5
    assert profile_users(RAMP, 25) is None
    assert profile_users(PEAK, 10) is None
    assert profile_users(PEAK, 25) == 3
    assert profile_users(PEAK, 50) is None


def test_tick_follows_profiles():
    shape = ScriptedShape()

    shape.now = 5
    assert shape.tick() == (5, 5, [])

    shape.now = 15
    shape.current = 5
    assert shape.tick()[0] == 5

    shape.now = 30
    assert shape.tick()[0] == 3

    shape.now = 50
    assert shape.tick() is None


def test_pacing_spreads_rate_over_users():
    shape = ScriptedShape()
    shape.now = 5
    assert shape.pacing() is None
    shape.now = 25
    # 1 start/s shared by 3 users
    assert shape.pacing() == 3.0
