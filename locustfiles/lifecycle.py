"""Locust test lifecycle: scenario setup before users spawn, thresholds on quit."""

import logging
from typing import Any, Callable, Dict

from analysis.thresholds import ThresholdEvaluator
from collectors.metrics import MetricCollector
from engine.errors import ConfigurationError, SetupError
from engine.orchestrator import EXIT_ERROR, EXIT_THRESHOLDS_FAILED
from scenarios.steps import Scenario

logger = logging.getLogger(__name__)


def run_setup(
    environment,
    scenario: Scenario,
    shared: Dict[str, Any],
    transport_factory: Callable[[], Any]
) -> bool:
    """Run the scenario setup once and publish its result in `shared`.

    A failed setup stops the Locust runner before any user spawns and
    makes the process exit with EXIT_ERROR.

    Returns:
        True if users may start
    """
    if scenario.setup is None:
        return True

    logger.info(f"Running setup for scenario {scenario.name}")
    transport = transport_factory()
    try:
        data = scenario.setup(transport) or {}
    except Exception as e:
        error = e if isinstance(e, ConfigurationError) else SetupError(f"Setup failed: {e}")
        logger.error(f"Stopping test, {error}")
        environment.process_exit_code = EXIT_ERROR
        if environment.runner is not None:
            environment.runner.quit()
        return False
    finally:
        transport.close()

    shared.update({
        key: tuple(value) if isinstance(value, list) else value
        for key, value in dict(data).items()
    })
    return True


def report_thresholds(
    environment,
    evaluator: ThresholdEvaluator,
    collector: MetricCollector
) -> bool:
    """Evaluate thresholds and fail the process when one is crossed."""
    evaluator.evaluate(collector)
    summary = evaluator.get_summary()
    for result in summary['results']:
        logger.info(
            f"Threshold {result['metric']} {result['expression']}: {result['status']}"
        )
    if summary['verdict'] == 'passed':
        return True

    logger.error(f"{summary['failed_count']} threshold(s) crossed")
    if not environment.process_exit_code:
        environment.process_exit_code = EXIT_THRESHOLDS_FAILED
    return False
