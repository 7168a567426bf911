"""Report generator for load test results.

Produces the run summary in three forms: a JSON document, an HTML
report with the charts embedded, and a console table.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import BaseLoader, Environment
from tabulate import tabulate

logger = logging.getLogger(__name__)

# HTML template for the report
REPORT_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ title }}</title>
    <style>
        * { box-sizing: border-box; margin: 0; padding: 0; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 1400px;
            margin: 0 auto;
            padding: 20px;
            background: #f5f5f5;
        }
        header {
            background: linear-gradient(135deg, #0f766e 0%, #1e3a8a 100%);
            color: white;
            padding: 30px;
            border-radius: 10px;
            margin-bottom: 20px;
        }
        h1 { font-size: 2em; margin-bottom: 10px; }
        h2 { color: #444; margin: 20px 0 15px; padding-bottom: 10px; border-bottom: 2px solid #eee; }
        .meta { opacity: 0.9; font-size: 0.9em; }
        .card {
            background: white;
            border-radius: 10px;
            padding: 20px;
            margin-bottom: 20px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }
        .grid {
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(220px, 1fr));
            gap: 20px;
            margin-bottom: 20px;
        }
        .metric-card {
            background: white;
            border-radius: 10px;
            padding: 20px;
            text-align: center;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }
        .metric-value { font-size: 2em; font-weight: bold; color: #1e3a8a; }
        .metric-label { color: #666; font-size: 0.9em; }
        .verdict-passed { color: #10b981; }
        .verdict-failed { color: #dc2626; }
        .status-passed { color: #10b981; }
        .status-failed { color: #dc2626; font-weight: bold; }
        .status-skipped { color: #6b7280; }
        table { width: 100%; border-collapse: collapse; margin: 15px 0; }
        th, td { padding: 10px; text-align: left; border-bottom: 1px solid #eee; }
        th { background: #f8f9fa; font-weight: 600; }
        tr:hover { background: #f8f9fa; }
        img { max-width: 100%; margin: 10px 0; }
        footer { text-align: center; padding: 20px; color: #666; font-size: 0.9em; }
    </style>
</head>
<body>
    <header>
        <h1>{{ title }}</h1>
        <div class="meta">
            <p>Scenario: {{ summary.run.scenario }}</p>
            <p>Duration: {{ duration }}</p>
            {% if summary.run.stop_reason %}<p>Stopped: {{ summary.run.stop_reason }}</p>{% endif %}
            <p>Generated: {{ generated_at }}</p>
        </div>
    </header>

    <section class="grid">
        <div class="metric-card">
            <div class="metric-value verdict-{{ summary.verdict }}">{{ summary.verdict | upper }}</div>
            <div class="metric-label">Verdict</div>
        </div>
        <div class="metric-card">
            <div class="metric-value">{{ summary.derived.total_requests }}</div>
            <div class="metric-label">HTTP Requests</div>
        </div>
        <div class="metric-card">
            <div class="metric-value">{{ "%.1f" | format(summary.derived.requests_per_sec) }}</div>
            <div class="metric-label">Requests/sec</div>
        </div>
        <div class="metric-card">
            <div class="metric-value">{{ summary.derived.total_iterations }}</div>
            <div class="metric-label">Iterations</div>
        </div>
        <div class="metric-card">
            <div class="metric-value">{{ "%.2f" | format(summary.derived.error_rate_pct) }}%</div>
            <div class="metric-label">HTTP Error Rate</div>
        </div>
        <div class="metric-card">
            <div class="metric-value">{{ summary.derived.dropped_iterations }}</div>
            <div class="metric-label">Dropped Iterations</div>
        </div>
    </section>

    {% if summary.thresholds.results %}
    <section class="card">
        <h2>Thresholds</h2>
        <table>
            <tr><th>Metric</th><th>Threshold</th><th>Observed</th><th>Status</th></tr>
            {% for t in summary.thresholds.results %}
            <tr>
                <td>{{ t.metric }}</td>
                <td>{{ t.expression }}{% if t.abort_on_fail %} (abort on fail){% endif %}</td>
                <td>{{ t.observed | num }}</td>
                <td class="status-{{ t.status }}">{{ t.status }}{% if t.reason %} - {{ t.reason }}{% endif %}</td>
            </tr>
            {% endfor %}
        </table>
    </section>
    {% endif %}

    <section class="card">
        <h2>Latency (ms)</h2>
        <table>
            <tr><th>Metric</th><th>Count</th><th>Avg</th><th>Min</th><th>Med</th><th>p90</th><th>p95</th><th>p99</th><th>Max</th></tr>
            {% for name, m in trends %}
            <tr>
                <td>{{ name }}</td><td>{{ m.count }}</td>
                <td>{{ m.avg | num }}</td><td>{{ m.min | num }}</td><td>{{ m.med | num }}</td>
                <td>{{ m.p90 | num }}</td><td>{{ m.p95 | num }}</td><td>{{ m.p99 | num }}</td>
                <td>{{ m.max | num }}</td>
            </tr>
            {% endfor %}
        </table>

        <h2>Counters and Rates</h2>
        <table>
            <tr><th>Metric</th><th>Type</th><th>Value</th></tr>
            {% for name, m in others %}
            <tr><td>{{ name }}</td><td>{{ m.type }}</td><td>{{ m | describe }}</td></tr>
            {% endfor %}
        </table>
    </section>

    <section class="card">
        <h2>Executors</h2>
        <table>
            <tr><th>Name</th><th>Executor</th><th>Requested</th><th>Started</th><th>Completed</th><th>Aborted</th><th>Interrupted</th><th>Dropped</th><th>Peak VUs</th></tr>
            {% for name, e in summary.run.executors.items() %}
            <tr>
                <td>{{ name }}</td><td>{{ e.executor }}</td>
                <td>{{ e.requested if e.requested is not none else '-' }}</td>
                <td>{{ e.started }}</td><td>{{ e.completed }}</td><td>{{ e.aborted }}</td>
                <td>{{ e.interrupted }}</td><td>{{ e.dropped }}</td><td>{{ e.max_active }}</td>
            </tr>
            {% endfor %}
        </table>
    </section>

    {% if plots %}
    <section class="card">
        <h2>Charts</h2>
        {% for name, path in plots.items() %}
        <img src="{{ path }}" alt="{{ name }}">
        {% endfor %}
    </section>
    {% endif %}

    {% if config %}
    <section class="card">
        <h2>Test Configuration</h2>
        <pre style="background: #f8f9fa; padding: 15px; border-radius: 5px; overflow-x: auto;">{{ config | tojson(indent=2) }}</pre>
    </section>
    {% endif %}

    <footer>
        <p>Generated by survey-load-test</p>
        <p>{{ generated_at }}</p>
    </footer>
</body>
</html>
"""


def num(value: Optional[float], digits: int = 2) -> str:
    """Format a number for display; missing values become '-'."""
    if value is None:
        return "-"
    if isinstance(value, int):
        return str(value)
    return f"{value:.{digits}f}"


def describe(entry: Dict[str, Any]) -> str:
    """One-line description of a counter, rate or gauge entry."""
    kind = entry.get('type')
    if kind == 'counter':
        return f"{entry['count']} ({entry['rate']:.2f}/s)"
    if kind == 'rate':
        if not entry.get('count'):
            return "no samples"
        return f"{entry['rate'] * 100:.2f}% ({entry['passes']}/{entry['count']})"
    if kind == 'gauge':
        return f"{num(entry.get('value'))} (min {num(entry.get('min'))}, max {num(entry.get('max'))})"
    return str(entry)


def build_summary(
    run_name: str,
    scenario: str,
    snapshot: Dict[str, Dict[str, Any]],
    derived: Dict[str, Any],
    run: Dict[str, Any],
    thresholds: Dict[str, Any],
    run_id: Optional[int] = None
) -> Dict[str, Any]:
    """Assemble the run summary document.

    Args:
        run_name: Name of the test run
        scenario: Scenario that was executed
        snapshot: MetricCollector.snapshot()
        derived: MetricsAggregator.derive() output
        run: RunResult.to_dict()
        thresholds: ThresholdEvaluator.get_summary()
        run_id: Storage ID of the run

    Returns:
        JSON-serializable summary
    """
    return {
        'run': {
            'id': run_id,
            'name': run_name,
            'scenario': scenario,
            **run,
        },
        'verdict': thresholds.get('verdict', 'passed'),
        'metrics': snapshot,
        'derived': derived,
        'thresholds': thresholds,
    }


class ReportGenerator:
    """Generates load test reports.

    Report sections:
    1. Verdict and headline numbers
    2. Threshold results
    3. Latency trends and other metrics
    4. Executor accounting
    5. Charts
    6. Configuration
    """

    def __init__(self, output_dir: str = "./reports"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.env = Environment(loader=BaseLoader())
        self.env.filters['num'] = num
        self.env.filters['describe'] = describe
        self.template = self.env.from_string(REPORT_TEMPLATE)

    def write_json(self, summary: Dict[str, Any], run_id: Any) -> str:
        """Write summary_<run_id>.json and return its path."""
        filepath = self.output_dir / f"summary_{run_id}.json"
        with open(filepath, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info(f"Summary written: {filepath}")
        return str(filepath)

    def generate(
        self,
        summary: Dict[str, Any],
        plots: Optional[Dict[str, str]] = None,
        config: Optional[Dict] = None
    ) -> str:
        """Generate an HTML report.

        Args:
            summary: Output of build_summary()
            plots: Chart name to image path
            config: Test configuration (optional)

        Returns:
            Path to the generated report file
        """
        run = summary['run']
        elapsed = run.get('elapsed_seconds') or 0
        duration = f"{int(elapsed // 60)}m {int(elapsed % 60)}s"

        metrics = summary.get('metrics', {})
        trends = [(n, m) for n, m in sorted(metrics.items()) if m.get('type') == 'trend']
        others = [(n, m) for n, m in sorted(metrics.items()) if m.get('type') != 'trend']

        # charts are referenced relative to the report
        relative_plots = {}
        for name, path in (plots or {}).items():
            try:
                relative_plots[name] = str(Path(path).resolve().relative_to(self.output_dir.resolve()))
            except ValueError:
                relative_plots[name] = path

        html = self.template.render(
            title=f"Load Test Report - {run['name']}",
            duration=duration,
            generated_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            summary=summary,
            trends=trends,
            others=others,
            plots=relative_plots,
            config=config,
        )

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        filepath = self.output_dir / f"report_{run['name']}_{timestamp}.html"

        with open(filepath, 'w') as f:
            f.write(html)

        logger.info(f"Report generated: {filepath}")
        return str(filepath)

    @staticmethod
    def format_console(summary: Dict[str, Any]) -> str:
        """Render the summary as plain-text tables."""
        metrics = summary.get('metrics', {})
        sections: List[str] = []

        trend_rows = [
            [name, m['count'], num(m['avg']), num(m['min']), num(m['med']),
             num(m['p90']), num(m['p95']), num(m['p99']), num(m['max'])]
            for name, m in sorted(metrics.items()) if m.get('type') == 'trend'
        ]
        if trend_rows:
            sections.append(tabulate(
                trend_rows,
                headers=['trend (ms)', 'count', 'avg', 'min', 'med', 'p90', 'p95', 'p99', 'max'],
                tablefmt='github'
            ))

        other_rows = [
            [name, m.get('type'), describe(m)]
            for name, m in sorted(metrics.items()) if m.get('type') != 'trend'
        ]
        if other_rows:
            sections.append(tabulate(
                other_rows, headers=['metric', 'type', 'value'], tablefmt='github'
            ))

        threshold_rows = [
            [t['metric'], t['expression'], num(t['observed']), t['status'].upper()]
            for t in summary.get('thresholds', {}).get('results', [])
        ]
        if threshold_rows:
            sections.append(tabulate(
                threshold_rows,
                headers=['metric', 'threshold', 'observed', 'status'],
                tablefmt='github'
            ))

        run = summary.get('run', {})
        footer = f"verdict: {summary.get('verdict', 'passed').upper()}"
        if run.get('stop_reason'):
            footer += f" (stopped: {run['stop_reason']})"
        sections.append(footer)

        return "\n\n".join(sections)
