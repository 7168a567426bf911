"""Tests for load profile parsing and interpolation."""

import pytest

from engine.errors import ConfigurationError
from engine.profiles import (
    ArrivalRateProfile,
    RampingProfile,
    Stage,
    parse_duration,
    parse_profile,
    parse_profiles,
)


@pytest.mark.parametrize("value,expected", [
    (30, 30.0),
    (1.5, 1.5),
    ("45", 45.0),
    ("500ms", 0.5),
    ("30s", 30.0),
    ("5m", 300.0),
    ("1h", 3600.0),
    ("1m30s", 90.0),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", [None, True, "abc", "5x", "-3s", -1, "1m foo"])
def test_parse_duration_rejects(value):
    with pytest.raises(ConfigurationError):
        parse_duration(value)


class TestRampingProfile:

    def test_interpolates_between_stages(self):
        profile = RampingProfile('ramp', [Stage(10, 100), Stage(10, 100), Stage(10, 0)])

        assert profile.target_at(0) == 0
        assert profile.target_at(5) == 50
        assert profile.target_at(15) == 100
        assert profile.target_at(25) == 50
        assert profile.target_at(30) is None
        assert profile.duration == 30
        assert profile.max_vus == 100

    def test_starts_from_start_vus(self):
        profile = RampingProfile('ramp', [Stage(10, 20)], start_vus=10)
        assert profile.target_at(0) == 10
        assert profile.target_at(5) == 15

    def test_zero_length_stage_jumps(self):
        profile = RampingProfile('ramp', [Stage(0, 50), Stage(10, 50)])
        assert profile.target_at(0) == 50

    @pytest.mark.parametrize("kwargs", [
        {'stages': []},
        {'stages': [Stage(10, -1)]},
        {'stages': [Stage(-1, 10)]},
        {'stages': [Stage(10, 10)], 'start_vus': -1},
        {'stages': [Stage(10, 10)], 'graceful_stop': -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            RampingProfile('ramp', **kwargs)


class TestArrivalRateProfile:

    def test_requested_iterations_and_offsets(self):
        profile = ArrivalRateProfile('off_peak', rate=10, time_unit=60, duration=300,
                                     pre_allocated=2, max_concurrency=10)

        assert profile.requested_iterations == 50
        assert profile.interval == 6.0
        offsets = profile.start_offsets()
        assert len(offsets) == 50
        assert offsets[:3] == [0.0, 6.0, 12.0]

    def test_max_concurrency_defaults_to_pre_allocated(self):
        profile = ArrivalRateProfile('p', rate=1, duration=10, pre_allocated=4)
        assert profile.max_concurrency == 4

    def test_zero_rate_schedules_nothing(self):
        profile = ArrivalRateProfile('p', rate=0, duration=10)
        assert profile.start_offsets() == []

    @pytest.mark.parametrize("kwargs", [
        {'rate': -1, 'duration': 10},
        {'rate': 1, 'duration': -10},
        {'rate': 1, 'duration': 10, 'time_unit': 0},
        {'rate': 1, 'duration': 10, 'pre_allocated': 5, 'max_concurrency': 2},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            ArrivalRateProfile('p', **kwargs)


class TestParseProfile:

    def test_ramping_camel_case(self):
        profile = parse_profile('ramp', {
            'executor': 'ramping-vus',
            'startVUs': 1,
            'startTime': '10s',
            'gracefulRampDown': '5s',
            'stages': [{'duration': '1m', 'target': 20}],
        })

        assert isinstance(profile, RampingProfile)
        assert profile.start_vus == 1
        assert profile.start_offset == 10
        assert profile.graceful_ramp_down == 5
        assert profile.stages == [Stage(60.0, 20)]

    def test_arrival_rate_k6_keys(self):
        profile = parse_profile('peak_load', {
            'executor': 'constant-arrival-rate',
            'rate': 50,
            'timeUnit': '1m',
            'duration': '5m',
            'startTime': '5m',
            'preAllocatedVUs': 10,
            'maxVUs': 40,
        })

        assert isinstance(profile, ArrivalRateProfile)
        assert profile.time_unit == 60
        assert profile.start_offset == 300
        assert profile.pre_allocated == 10
        assert profile.max_concurrency == 40
        assert profile.requested_iterations == 250

    def test_executor_inferred(self):
        assert isinstance(
            parse_profile('a', {'stages': [{'duration': 1, 'target': 1}]}), RampingProfile
        )
        assert isinstance(
            parse_profile('b', {'rate': 1, 'duration': 1}), ArrivalRateProfile
        )

    @pytest.mark.parametrize("config", [
        {'executor': 'per-vu-iterations'},
        {'executor': 'ramping-vus', 'stages': 'fast'},
        {'stages': [{'duration': '1m', 'target': 1.5}]},
        {'rate': 'many', 'duration': '1m'},
        'not a mapping',
    ])
    def test_invalid(self, config):
        with pytest.raises(ConfigurationError):
            parse_profile('bad', config)

    def test_parse_profiles_keeps_order(self):
        profiles = parse_profiles({
            'off_peak_load': {'rate': 10, 'time_unit': '1m', 'duration': '5m'},
            'peak_load': {'rate': 50, 'time_unit': '1m', 'duration': '5m', 'start_time': '5m'},
        })
        assert [p.name for p in profiles] == ['off_peak_load', 'peak_load']

    def test_parse_profiles_requires_one(self):
        with pytest.raises(ConfigurationError):
            parse_profiles({})
