"""Tests for SQLite result storage."""

import json

import pytest

from collectors.storage import MetricsStorage


@pytest.fixture
def storage(tmp_path):
    return MetricsStorage(str(tmp_path / "results" / "metrics.db"))


def test_creates_parent_directory(tmp_path):
    MetricsStorage(str(tmp_path / "nested" / "dir" / "metrics.db"))
    assert (tmp_path / "nested" / "dir" / "metrics.db").exists()


def test_run_lifecycle(storage):
    run_id = storage.create_test_run(
        "peak", scenario="survey_journey", config={'test': {'seed': 1}}, notes="baseline"
    )

    run = storage.get_test_run(run_id)
    assert run['status'] == 'running'
    assert run['end_time'] is None
    assert json.loads(run['config']) == {'test': {'seed': 1}}

    storage.complete_test_run(run_id, 'aborted', verdict='failed',
                              stop_reason='threshold http_req_failed rate<0.05 crossed')

    run = storage.get_test_run(run_id)
    assert run['status'] == 'aborted'
    assert run['verdict'] == 'failed'
    assert run['stop_reason'].startswith('threshold')
    assert run['end_time'] is not None
    assert storage.get_test_run(run_id + 100) is None


def test_metric_summaries(storage, collector):
    for value in (10, 20, 30):
        collector.record_sample('survey_details_duration', value)
    collector.increment('dropped_iterations', 2)
    collector.record_rate('http_req_failed', False)
    collector.set_gauge('vus', 5)
    run_id = storage.create_test_run("run")

    storage.store_metric_summaries(run_id, collector.snapshot())

    rows = {row['name']: row for row in storage.get_metric_summaries(run_id)}
    assert rows['survey_details_duration']['kind'] == 'trend'
    assert rows['survey_details_duration']['avg'] == 20.0
    assert rows['survey_details_duration']['med'] == 20.0
    assert rows['dropped_iterations']['count'] == 2
    assert rows['http_req_failed']['rate'] == 0.0
    assert rows['vus']['value'] == 5.0
    assert rows['vus']['max'] == 5.0

    trends = storage.get_metric_summaries(run_id, kind='trend')
    assert [row['name'] for row in trends] == ['survey_details_duration']


def test_thresholds_and_timeline(storage):
    run_id = storage.create_test_run("run")
    storage.store_threshold_results(run_id, [
        {'metric': 'a', 'expression': 'avg<200', 'status': 'passed',
         'observed': 12.5, 'abort_on_fail': False, 'reason': ''},
        {'metric': 'b', 'expression': 'p(95)<500', 'status': 'skipped',
         'observed': None, 'abort_on_fail': True, 'reason': 'no samples recorded'},
    ])
    storage.store_timeline(run_id, [
        {'timestamp': 2.0, 'elapsed': 1.0, 'vus': 3, 'vus_max': 4,
         'executors': {'ramp': {'running': 3}}},
        {'timestamp': 1.0, 'elapsed': 0.0, 'vus': 0, 'vus_max': 0, 'executors': {}},
    ])

    thresholds = storage.get_threshold_results(run_id)
    assert [t['status'] for t in thresholds] == ['passed', 'skipped']
    assert thresholds[0]['reason'] is None
    assert thresholds[1]['abort_on_fail'] == 1

    timeline = storage.get_timeline(run_id)
    assert [t['vus'] for t in timeline] == [0, 3]
    assert json.loads(timeline[1]['raw_data']) == {'ramp': {'running': 3}}


def test_export_to_json(storage, tmp_path):
    run_id = storage.create_test_run("run", scenario="survey_participant")
    storage.complete_test_run(run_id, verdict='passed')
    output = tmp_path / "export.json"

    storage.export_to_json(run_id, str(output))

    data = json.loads(output.read_text())
    assert set(data) == {'test_run', 'metric_summaries', 'threshold_results', 'vu_timeline'}
    assert data['test_run']['scenario'] == 'survey_participant'
    assert data['test_run']['status'] == 'completed'


def test_list_test_runs(storage):
    ids = [storage.create_test_run(f"run-{i}") for i in range(3)]
    runs = storage.list_test_runs(limit=2)
    assert len(runs) == 2
    assert {r['id'] for r in runs} <= set(ids)
