"""Load test results storage using SQLite."""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

TREND_COLUMNS = ('count', 'avg', 'min', 'max', 'med', 'p90', 'p95', 'p99')


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetricsStorage:
    """SQLite-based storage for load test results.

    Tables:
    - test_runs: Run metadata, final status and verdict
    - metric_summaries: One aggregated row per metric per run
    - threshold_results: One row per evaluated threshold
    - vu_timeline: Periodic VU concurrency samples
    """

    def __init__(self, db_path: str = "metrics.db"):
        self.db_path = Path(db_path)
        if self.db_path.parent != Path('.'):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with context management."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS test_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    scenario TEXT,
                    start_time TIMESTAMP NOT NULL,
                    end_time TIMESTAMP,
                    config TEXT,
                    notes TEXT,
                    status TEXT DEFAULT 'running',
                    verdict TEXT,
                    stop_reason TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS metric_summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    count INTEGER,
                    avg REAL,
                    min REAL,
                    max REAL,
                    med REAL,
                    p90 REAL,
                    p95 REAL,
                    p99 REAL,
                    rate REAL,
                    value REAL,
                    raw_data TEXT,
                    FOREIGN KEY (run_id) REFERENCES test_runs(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS threshold_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL,
                    metric TEXT NOT NULL,
                    expression TEXT NOT NULL,
                    status TEXT NOT NULL,
                    observed REAL,
                    abort_on_fail INTEGER,
                    reason TEXT,
                    FOREIGN KEY (run_id) REFERENCES test_runs(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS vu_timeline (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL,
                    timestamp REAL NOT NULL,
                    elapsed REAL,
                    vus INTEGER,
                    vus_max INTEGER,
                    raw_data TEXT,
                    FOREIGN KEY (run_id) REFERENCES test_runs(id)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_summaries_run
                ON metric_summaries(run_id, name)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_timeline_run_time
                ON vu_timeline(run_id, timestamp)
            """)

    def create_test_run(
        self,
        name: str,
        scenario: Optional[str] = None,
        config: Optional[Dict] = None,
        notes: Optional[str] = None
    ) -> int:
        """Create a new test run and return its ID."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO test_runs (name, scenario, start_time, config, notes)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    name,
                    scenario,
                    _now(),
                    json.dumps(config, default=str) if config else None,
                    notes
                )
            )
            return cursor.lastrowid

    def complete_test_run(
        self,
        run_id: int,
        status: str = "completed",
        verdict: Optional[str] = None,
        stop_reason: Optional[str] = None
    ):
        """Mark a test run as finished."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE test_runs
                SET end_time = ?, status = ?, verdict = ?, stop_reason = ?
                WHERE id = ?
                """,
                (_now(), status, verdict, stop_reason, run_id)
            )

    def store_metric_summaries(self, run_id: int, snapshot: Dict[str, Dict[str, Any]]):
        """Store one row per metric of a collector snapshot."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            for name, entry in snapshot.items():
                kind = entry.get('type')
                if kind == 'trend':
                    columns = [entry.get(c) for c in TREND_COLUMNS]
                else:
                    columns = self._non_trend_columns(entry)
                cursor.execute(
                    """
                    INSERT INTO metric_summaries (
                        run_id, name, kind,
                        count, avg, min, max, med, p90, p95, p99,
                        rate, value, raw_data
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run_id, name, kind,
                        *columns,
                        entry.get('rate'),
                        entry.get('value'),
                        json.dumps(entry)
                    )
                )

    @staticmethod
    def _non_trend_columns(entry: Dict[str, Any]) -> List[Any]:
        """count, avg, min, max, med, p90, p95, p99 for non-trend metrics."""
        return [
            MetricsStorage._int_or_none(entry.get('count')),
            None,
            entry.get('min'),
            entry.get('max'),
            None, None, None, None,
        ]

    def store_threshold_results(self, run_id: int, results: List[Dict[str, Any]]):
        """Store evaluated thresholds (ThresholdResult.to_dict() rows)."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            for result in results:
                cursor.execute(
                    """
                    INSERT INTO threshold_results (
                        run_id, metric, expression, status,
                        observed, abort_on_fail, reason
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run_id,
                        result['metric'],
                        result['expression'],
                        result['status'],
                        result.get('observed'),
                        int(bool(result.get('abort_on_fail'))),
                        result.get('reason') or None
                    )
                )

    def store_timeline(self, run_id: int, samples: List[Dict[str, Any]]):
        """Store VU concurrency samples."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.executemany(
                """
                INSERT INTO vu_timeline (
                    run_id, timestamp, elapsed, vus, vus_max, raw_data
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        run_id,
                        sample['timestamp'],
                        sample.get('elapsed'),
                        self._int_or_none(sample.get('vus')),
                        self._int_or_none(sample.get('vus_max')),
                        json.dumps(sample.get('executors', {}))
                    )
                    for sample in samples
                ]
            )

    def get_metric_summaries(self, run_id: int, kind: Optional[str] = None) -> List[Dict]:
        """Get metric summaries for a test run."""
        query = "SELECT * FROM metric_summaries WHERE run_id = ?"
        params: List[Any] = [run_id]

        if kind:
            query += " AND kind = ?"
            params.append(kind)

        query += " ORDER BY name"

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def get_threshold_results(self, run_id: int) -> List[Dict]:
        """Get threshold results for a test run."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM threshold_results WHERE run_id = ? ORDER BY id",
                (run_id,)
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_timeline(self, run_id: int) -> List[Dict]:
        """Get the VU concurrency timeline for a test run."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM vu_timeline WHERE run_id = ? ORDER BY timestamp",
                (run_id,)
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_test_run(self, run_id: int) -> Optional[Dict]:
        """Get test run metadata."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM test_runs WHERE id = ?", (run_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def list_test_runs(self, limit: int = 20) -> List[Dict]:
        """List recent test runs."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM test_runs ORDER BY start_time DESC LIMIT ?",
                (limit,)
            )
            return [dict(row) for row in cursor.fetchall()]

    def export_to_json(self, run_id: int, output_path: str):
        """Export all data for a test run to JSON."""
        data = {
            'test_run': self.get_test_run(run_id),
            'metric_summaries': self.get_metric_summaries(run_id),
            'threshold_results': self.get_threshold_results(run_id),
            'vu_timeline': self.get_timeline(run_id)
        }
        with open(output_path, 'w') as f:
            json.dump(data, f, indent=2, default=str)

    @staticmethod
    def _int_or_none(value) -> Optional[int]:
        """Convert value to int or None."""
        if value is None or value == '':
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None
