"""Visualization utilities for load test results.

Generates matplotlib charts for the run summary.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt  # noqa: E402

logger = logging.getLogger(__name__)

PERCENTILES = ('med', 'p90', 'p95', 'p99')


class MetricsPlotter:
    """Creates visualizations for load test metrics."""

    def __init__(
        self,
        output_dir: str = "./reports/plots",
        figsize: Tuple[int, int] = (12, 6),
        dpi: int = 100
    ):
        """Initialize the plotter.

        Args:
            output_dir: Directory to save plot images
            figsize: Default figure size (width, height)
            dpi: Resolution for saved images
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.figsize = figsize
        self.dpi = dpi

        plt.style.use('seaborn-v0_8-whitegrid')

    def _save(self, fig, filename: str) -> str:
        filepath = self.output_dir / filename
        fig.tight_layout()
        fig.savefig(filepath, dpi=self.dpi)
        plt.close(fig)
        return str(filepath)

    def plot_vus_over_time(
        self,
        timeline: List[Dict[str, Any]],
        filename: str = "vus.png"
    ) -> str:
        """Plot running VUs over time, total and per executor.

        Args:
            timeline: Samples as produced by LoadScheduler.sample()
            filename: Output filename

        Returns:
            Path to saved plot, or "" when there is nothing to plot
        """
        if not timeline:
            return ""

        fig, ax = plt.subplots(figsize=self.figsize)
        elapsed = [s.get('elapsed', 0.0) for s in timeline]

        ax.plot(elapsed, [s.get('vus', 0) for s in timeline],
                label='Running VUs', linewidth=2)
        ax.plot(elapsed, [s.get('vus_max', 0) for s in timeline],
                '--', label='Allocated VUs', linewidth=1, alpha=0.7)

        executors = sorted({
            name for s in timeline for name in s.get('executors', {})
        })
        if len(executors) > 1:
            for name in executors:
                ax.plot(
                    elapsed,
                    [s.get('executors', {}).get(name, {}).get('running', 0)
                     for s in timeline],
                    label=name, linewidth=1
                )

        ax.set_xlabel('Elapsed (s)')
        ax.set_ylabel('VUs')
        ax.set_title('Virtual Users Over Time')
        ax.legend()

        return self._save(fig, filename)

    def plot_latency_percentiles(
        self,
        snapshot: Dict[str, Dict[str, Any]],
        filename: str = "latency.png"
    ) -> str:
        """Bar chart of latency percentiles per endpoint metric.

        Args:
            snapshot: MetricCollector.snapshot()
            filename: Output filename

        Returns:
            Path to saved plot, or "" when no latency trend has samples
        """
        trends = {
            name: entry for name, entry in sorted(snapshot.items())
            if entry.get('type') == 'trend'
            and name.endswith('_duration')
            and entry.get('count')
        }
        if not trends:
            return ""

        fig, ax = plt.subplots(figsize=self.figsize)
        names = list(trends)
        width = 0.8 / len(PERCENTILES)

        for offset, stat in enumerate(PERCENTILES):
            positions = [i + offset * width for i in range(len(names))]
            ax.bar(positions, [trends[n][stat] for n in names],
                   width=width, label=stat)

        ax.set_xticks([i + width * (len(PERCENTILES) - 1) / 2 for i in range(len(names))])
        ax.set_xticklabels(names, rotation=30, ha='right')
        ax.set_ylabel('Duration (ms)')
        ax.set_title('Latency Percentiles per Endpoint')
        ax.legend()

        return self._save(fig, filename)

    def plot_iteration_outcomes(
        self,
        snapshot: Dict[str, Dict[str, Any]],
        filename: str = "iterations.png"
    ) -> str:
        """Bar chart of iteration outcomes (completed, aborted, ...)."""
        outcomes = {
            label: snapshot.get(name, {}).get('count', 0)
            for label, name in (
                ('completed', 'iterations_completed'),
                ('aborted', 'iterations_aborted'),
                ('interrupted', 'iterations_interrupted'),
                ('dropped', 'dropped_iterations'),
            )
        }
        if not any(outcomes.values()):
            return ""

        fig, ax = plt.subplots(figsize=(self.figsize[0] // 2, self.figsize[1]))
        ax.bar(list(outcomes), list(outcomes.values()),
               color=['#10b981', '#dc2626', '#f59e0b', '#6b7280'])
        ax.set_ylabel('Iterations')
        ax.set_title('Iteration Outcomes')

        return self._save(fig, filename)

    def generate_all_plots(
        self,
        snapshot: Dict[str, Dict[str, Any]],
        timeline: Optional[List[Dict[str, Any]]] = None,
        prefix: str = ""
    ) -> Dict[str, str]:
        """Generate all available plots.

        Args:
            snapshot: MetricCollector.snapshot()
            timeline: VU concurrency samples (optional)
            prefix: Filename prefix

        Returns:
            Dictionary mapping plot name to file path
        """
        plots = {
            'vus': self.plot_vus_over_time(timeline or [], f"{prefix}vus.png"),
            'latency': self.plot_latency_percentiles(snapshot, f"{prefix}latency.png"),
            'iterations': self.plot_iteration_outcomes(snapshot, f"{prefix}iterations.png"),
        }
        plots = {name: path for name, path in plots.items() if path}
        logger.info(f"Generated {len(plots)} plot(s) in {self.output_dir}")
        return plots
