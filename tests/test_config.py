"""Tests for configuration loading."""

import pytest

from engine.config import DEFAULT_BASE_URL, apply_defaults, load_config
from engine.errors import ConfigurationError
from scenarios.survey import DEFAULT_PROFILES, JOURNEY_SCENARIO, PARTICIPANT_SCENARIO


@pytest.fixture
def profile_file(tmp_path):
    path = tmp_path / "profile.yaml"
    path.write_text(
        "test:\n"
        "  name: journey-smoke\n"
        "  scenario: survey_journey\n"
        "http:\n"
        "  base_url: http://surveys.internal:9000\n"
        "scenarios:\n"
        "  smoke:\n"
        "    executor: constant-arrival-rate\n"
        "    rate: 1\n"
        "    duration: 10s\n"
        "thresholds:\n"
        "  http_req_failed:\n"
        "    - rate<0.1\n"
        "storage:\n"
    )
    return path


def test_defaults_without_file():
    config = load_config(environ={})

    assert config['test']['scenario'] == PARTICIPANT_SCENARIO
    assert config['http']['base_url'] == DEFAULT_BASE_URL
    assert config['scenarios'] == DEFAULT_PROFILES[PARTICIPANT_SCENARIO]
    assert config['storage']['path'] == 'metrics.db'
    assert config['report']['formats'] == ['html', 'json']


def test_file_values(profile_file):
    config = load_config(str(profile_file), environ={})

    assert config['test']['name'] == 'journey-smoke'
    assert config['http']['base_url'] == 'http://surveys.internal:9000'
    assert list(config['scenarios']) == ['smoke']
    assert config['thresholds'] == {'http_req_failed': ['rate<0.1']}
    assert config['storage'] == {'path': 'metrics.db'}


def test_environment_then_overrides(profile_file):
    environ = {'BASE_URL': 'http://env:1', 'SURVEY_ID': '42', 'SCENARIO': PARTICIPANT_SCENARIO}

    config = load_config(str(profile_file), environ=environ)
    assert config['http']['base_url'] == 'http://env:1'
    assert config['test']['survey_id'] == '42'
    assert config['test']['scenario'] == PARTICIPANT_SCENARIO

    config = load_config(
        str(profile_file),
        overrides={'http': {'base_url': 'http://cli:2'}, 'test': {'survey_id': None}},
        environ=environ,
    )
    assert config['http']['base_url'] == 'http://cli:2'
    assert config['test']['survey_id'] == '42'


def test_scenario_defaults_follow_selected_scenario():
    config = load_config(overrides={'test': {'scenario': JOURNEY_SCENARIO}}, environ={})
    assert set(config['scenarios']) == {'off_peak_load', 'peak_load'}
    assert config['thresholds']['survey_response_duration'] == ['avg<400']


def test_defaults_are_copies():
    config = load_config(overrides={'test': {'scenario': JOURNEY_SCENARIO}}, environ={})
    config['scenarios']['peak_load']['rate'] = 1
    assert DEFAULT_PROFILES[JOURNEY_SCENARIO]['peak_load']['rate'] == 50


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "missing.yaml"), environ={})


@pytest.mark.parametrize("content", ["test: [unclosed", "- just\n- a list\n"])
def test_invalid_file(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        load_config(str(path), environ={})


@pytest.mark.parametrize("config", [
    {'test': {'scenario': 'browse'}},
    {'http': 'http://localhost'},
])
def test_invalid_sections(config):
    with pytest.raises(ConfigurationError):
        apply_defaults(config)
