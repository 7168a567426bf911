"""Test configuration loading.

A test profile is a YAML file with these sections:

    test:        name, scenario, survey_id, stop_deadline, seed,
                 think_time_scale, threshold_check_interval, notes
    http:        base_url, timeout, headers
    scenarios:   named load profiles (k6 style executor options)
    thresholds:  metric name -> list of threshold expressions
    storage:     path of the SQLite database
    report:      output_dir, formats, export_json, plots

Missing sections are filled with defaults. When `scenarios` or
`thresholds` is empty, the selected scenario's defaults apply.
Environment variables BASE_URL, SURVEY_ID and SCENARIO override the
file; explicit overrides (command line) win over both.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from scenarios.survey import DEFAULT_PROFILES, DEFAULT_THRESHOLDS, PARTICIPANT_SCENARIO
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"

ENV_OVERRIDES = {
    'BASE_URL': ('http', 'base_url'),
    'SURVEY_ID': ('test', 'survey_id'),
    'SCENARIO': ('test', 'scenario'),
}


def apply_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in defaults for every section."""
    for section in ('test', 'http', 'storage', 'report'):
        if config.get(section) is None:
            config[section] = {}
        elif not isinstance(config[section], dict):
            raise ConfigurationError(f"Section {section} must be a mapping")

    config['test'].setdefault('name', 'survey-load-test')
    config['test'].setdefault('scenario', PARTICIPANT_SCENARIO)
    config['test'].setdefault('survey_id', None)
    config['test'].setdefault('stop_deadline', None)
    config['test'].setdefault('seed', None)
    config['test'].setdefault('think_time_scale', 1.0)
    config['test'].setdefault('threshold_check_interval', 1.0)

    config['http'].setdefault('base_url', DEFAULT_BASE_URL)
    config['http'].setdefault('timeout', 10)
    config['http'].setdefault('headers', {})

    scenario = config['test']['scenario']
    if scenario not in DEFAULT_PROFILES:
        raise ConfigurationError(
            f"Unknown scenario {scenario!r}, expected one of: "
            f"{', '.join(sorted(DEFAULT_PROFILES))}"
        )
    if not config.get('scenarios'):
        config['scenarios'] = copy.deepcopy(DEFAULT_PROFILES[scenario])
    if not config.get('thresholds'):
        config['thresholds'] = copy.deepcopy(DEFAULT_THRESHOLDS[scenario])

    config['storage'].setdefault('path', 'metrics.db')

    config['report'].setdefault('output_dir', './reports')
    config['report'].setdefault('formats', ['html', 'json'])
    config['report'].setdefault('export_json', True)
    config['report'].setdefault('plots', True)

    return config


def _set(config: Dict[str, Any], section: str, key: str, value: Any):
    config.setdefault(section, {})
    if config[section] is None:
        config[section] = {}
    config[section][key] = value


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    environ: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Load a test profile and apply overrides and defaults.

    Args:
        path: YAML file to load; None starts from an empty config
        overrides: {section: {key: value}} applied last; None values
            are ignored
        environ: Environment to read overrides from (os.environ by default)

    Returns:
        The complete configuration dictionary

    Raises:
        ConfigurationError: If the file is missing or not valid YAML
    """
    config: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(config, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")
        logger.info(f"Loaded configuration from {config_path}")

    environ = os.environ if environ is None else environ
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value:
            logger.debug(f"{variable} overrides {section}.{key}")
            _set(config, section, key, value)

    for section, values in (overrides or {}).items():
        for key, value in values.items():
            if value is not None:
                _set(config, section, key, value)

    return apply_defaults(config)
