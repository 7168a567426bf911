"""Load test orchestrator.

Runs the complete load test workflow:
1. Loads the configuration and builds scenario, profiles and thresholds
2. Validates that the target is reachable
3. Runs setup and every load profile
4. Evaluates thresholds
5. Stores results and generates reports

Exit status: 0 when every threshold passed, 1 when a threshold failed,
2 on configuration, setup or internal errors.

Usage:
    run-test.py --config configs/test_profiles/survey_journey.yaml
    run-test.py --scenario survey_participant --survey-id 42 --stop-deadline 2m
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from analysis.plots import MetricsPlotter
from analysis.report_generator import ReportGenerator, build_summary
from analysis.thresholds import ThresholdEvaluator, ThresholdResult, parse_thresholds
from collectors.aggregator import MetricsAggregator
from collectors.metrics import MetricCollector
from collectors.storage import MetricsStorage
from scenarios.survey import build_scenario
from scenarios.transport import HttpTransport
from .config import load_config
from .errors import ConfigurationError, SetupError
from .profiles import parse_duration, parse_profiles
from .scheduler import LoadScheduler, RunResult

logger = logging.getLogger('survey-load-test')

EXIT_PASSED = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_ERROR = 2


class TestOrchestrator:
    """Orchestrates the complete load test workflow."""

    # not a pytest test class
    __test__ = False

    def __init__(self, config: Dict[str, Any], validate: bool = True):
        """Initialize the orchestrator.

        Args:
            config: Complete configuration, as returned by load_config()
            validate: Check that the target answers before starting
        """
        self.config = config
        self.validate = validate
        self.storage: Optional[MetricsStorage] = None
        self.run_id: Optional[int] = None
        self.collector: Optional[MetricCollector] = None
        self.scheduler: Optional[LoadScheduler] = None
        self.evaluator: Optional[ThresholdEvaluator] = None
        self.result: Optional[RunResult] = None
        self.summary: Optional[Dict[str, Any]] = None
        self.aborted_by: Optional[ThresholdResult] = None

    @property
    def base_url(self) -> str:
        return self.config['http']['base_url']

    def validate_environment(self):
        """Check that the target base URL answers at all.

        Raises:
            SetupError: If the target cannot be reached
        """
        logger.info(f"Validating target {self.base_url}...")
        try:
            response = requests.get(self.base_url, timeout=self.config['http']['timeout'])
            logger.info(f"Target {self.base_url} is reachable (status: {response.status_code})")
        except requests.RequestException as e:
            raise SetupError(f"Cannot reach {self.base_url}: {e}") from e

    def transport_factory(self) -> HttpTransport:
        http = self.config['http']
        return HttpTransport(
            base_url=http['base_url'],
            timeout=http['timeout'],
            headers=http.get('headers') or None,
        )

    def build(self):
        """Build collector, scheduler and evaluator from the configuration.

        Raises:
            ConfigurationError: On any invalid setting
        """
        test = self.config['test']
        scenario = build_scenario(
            test['scenario'],
            survey_id=test.get('survey_id'),
            think_time_scale=float(test['think_time_scale']),
        )
        profiles = parse_profiles(self.config['scenarios'])
        thresholds = parse_thresholds(self.config['thresholds'])

        stop_deadline = test.get('stop_deadline')
        if stop_deadline is not None:
            stop_deadline = parse_duration(stop_deadline, 'test.stop_deadline')

        seed = test.get('seed')
        if seed is not None:
            try:
                seed = int(seed)
            except (TypeError, ValueError):
                raise ConfigurationError(f"test.seed must be an integer, got {seed!r}") from None

        self.collector = MetricCollector()
        self.scheduler = LoadScheduler(
            profiles=profiles,
            scenario=scenario,
            collector=self.collector,
            transport_factory=self.transport_factory,
            stop_deadline=stop_deadline,
            seed=seed,
        )
        self.evaluator = ThresholdEvaluator(thresholds)

        if any(t.abort_on_fail for t in thresholds):
            self.scheduler.monitor.add_collector(
                name='thresholds',
                collector=self.evaluator.watch(self.collector, self._abort),
                interval=float(test['threshold_check_interval']),
            )
            logger.info("Abort-on-fail thresholds will be checked while running")

        logger.info(
            f"Scenario {scenario.name} with profiles "
            f"{', '.join(p.name for p in profiles)} and {len(thresholds)} threshold(s)"
        )

    def _abort(self, result: ThresholdResult):
        self.aborted_by = result
        self.scheduler.stop(
            f"threshold {result.threshold.metric} {result.threshold.expression} crossed"
        )

    def setup_storage(self):
        """Create the storage and the test run record."""
        self.storage = MetricsStorage(self.config['storage']['path'])
        self.run_id = self.storage.create_test_run(
            name=self.config['test']['name'],
            scenario=self.config['test']['scenario'],
            config=self.config,
            notes=self.config['test'].get('notes')
        )
        logger.info(f"Created test run with ID: {self.run_id}")

    def generate_report(self) -> Dict[str, Any]:
        """Evaluate thresholds, store results and write every report.

        Returns:
            The run summary
        """
        snapshot = self.collector.snapshot()
        self.evaluator.evaluate(self.collector)
        threshold_summary = self.evaluator.get_summary()
        derived = MetricsAggregator().derive(snapshot, self.result.elapsed)

        self.summary = build_summary(
            run_name=self.config['test']['name'],
            scenario=self.config['test']['scenario'],
            snapshot=snapshot,
            derived=derived,
            run=self.result.to_dict(),
            thresholds=threshold_summary,
            run_id=self.run_id,
        )

        if self.storage is not None:
            self.storage.store_metric_summaries(self.run_id, snapshot)
            self.storage.store_threshold_results(self.run_id, threshold_summary['results'])
            self.storage.store_timeline(self.run_id, self.result.timeline)

        report_config = self.config['report']
        output_dir = Path(report_config['output_dir'])
        generator = ReportGenerator(str(output_dir))
        formats = report_config.get('formats') or []

        if 'json' in formats:
            generator.write_json(self.summary, self.run_id)

        plots: Dict[str, str] = {}
        if report_config.get('plots'):
            plotter = MetricsPlotter(str(output_dir / 'plots'))
            plots = plotter.generate_all_plots(
                snapshot, self.result.timeline, prefix=f"run{self.run_id}_"
            )

        if 'html' in formats:
            generator.generate(self.summary, plots=plots, config=self.config)

        if report_config.get('export_json') and self.storage is not None:
            json_path = output_dir / f"data_{self.run_id}.json"
            self.storage.export_to_json(self.run_id, str(json_path))
            logger.info(f"Data exported: {json_path}")

        print(generator.format_console(self.summary))
        return self.summary

    def _run_status(self) -> str:
        if self.aborted_by is not None:
            return 'aborted'
        if self.result.stop_reason == "interrupted by user":
            return 'interrupted'
        return 'completed'

    def run(self) -> int:
        """Run the complete load test.

        Returns:
            Process exit status
        """
        try:
            self.build()
            if self.validate:
                self.validate_environment()
            self.setup_storage()

            logger.info("Starting load test...")
            self.result = self.scheduler.run()
            logger.info(
                f"Load test finished after {self.result.elapsed:.1f}s"
                + (f" ({self.result.stop_reason})" if self.result.stop_reason else "")
            )

            summary = self.generate_report()
            passed = summary['verdict'] == 'passed'

            self.storage.complete_test_run(
                self.run_id, self._run_status(),
                verdict=summary['verdict'],
                stop_reason=self.result.stop_reason
            )

            logger.info("=" * 60)
            logger.info(f"LOAD TEST {'PASSED' if passed else 'FAILED'}")
            logger.info("=" * 60)

            return EXIT_PASSED if passed else EXIT_THRESHOLDS_FAILED

        except ConfigurationError as e:
            logger.error(f"{type(e).__name__}: {e}")
            if self.storage and self.run_id:
                self.storage.complete_test_run(self.run_id, 'error', stop_reason=str(e))
            return EXIT_ERROR

        except Exception as e:
            logger.exception(f"Test failed with error: {e}")
            if self.storage and self.run_id:
                self.storage.complete_test_run(self.run_id, 'error', stop_reason=str(e))
            return EXIT_ERROR


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Survey API load test runner'
    )
    parser.add_argument(
        '--config', '-c',
        help='Path to test configuration YAML file'
    )
    parser.add_argument(
        '--base-url',
        help='Override target base URL'
    )
    parser.add_argument(
        '--survey-id',
        help='Survey answered by the survey_participant scenario'
    )
    parser.add_argument(
        '--scenario', '-s',
        help='Scenario to run (survey_participant or survey_journey)'
    )
    parser.add_argument(
        '--stop-deadline', '-d',
        help='Stop the whole test after this long, e.g. 90s or 5m'
    )
    parser.add_argument(
        '--think-time-scale',
        type=float,
        help='Multiply every think-time pause (0 disables them)'
    )
    parser.add_argument(
        '--seed',
        type=int,
        help='Seed for the per-VU random generators'
    )
    parser.add_argument(
        '--output-dir', '-o',
        help='Override report output directory'
    )
    parser.add_argument(
        '--no-validate',
        action='store_true',
        help='Skip the target reachability check'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Map command-line flags onto configuration sections."""
    return {
        'http': {'base_url': args.base_url},
        'test': {
            'survey_id': args.survey_id,
            'scenario': args.scenario,
            'stop_deadline': args.stop_deadline,
            'think_time_scale': args.think_time_scale,
            'seed': args.seed,
        },
        'report': {'output_dir': args.output_dir},
    }


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(args.config, overrides_from_args(args))
    except ConfigurationError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(EXIT_ERROR)

    orchestrator = TestOrchestrator(config, validate=not args.no_validate)
    sys.exit(orchestrator.run())


if __name__ == '__main__':
    main()
