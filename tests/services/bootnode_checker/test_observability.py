from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from prometheus_client.parser import text_string_to_metric_families

from bootnode_checker.collector import ResultCollector
from bootnode_checker.models import CheckResult, CheckStatus, FailureReason
from bootnode_checker.observability import (
    METRICS_FILE_NAME,
    RESULTS_FILE_NAME,
    export_snapshot,
    render_metrics,
    write_metrics_textfile,
    write_results_json,
)


def _snapshot(make_target, entries):
    collector = ResultCollector()
    for provider, network, reason, duration_ms in entries:
        collector.record(
            CheckResult(
                target=make_target(provider=provider, network=network),
                status=CheckStatus.UP if reason is None else CheckStatus.DOWN,
                failure_reason=reason,
                duration_ms=duration_ms,
                completed_at=datetime.now(tz=timezone.utc),
            )
        )
    return collector.snapshot()


def _samples(text: str) -> dict[str, list]:
    return {family.name: list(family.samples) for family in text_string_to_metric_families(text)}


def test_status_gauge_labels_failures_only_on_down(make_target) -> None:
    snapshot = _snapshot(
        make_target,
        [("A", "polkadot", None, 1200), ("B", "kusama", FailureReason.SPAWN_ERROR, 3)],
    )
    samples = _samples(render_metrics(snapshot))

    status = {(s.labels["provider"], s.labels["network"]): s for s in samples["bootnode_status"]}
    assert status[("A", "polkadot")].value == 1.0
    assert "failure_reason" not in status[("A", "polkadot")].labels
    assert status[("B", "kusama")].value == 0.0
    assert status[("B", "kusama")].labels["failure_reason"] == "spawn_error"

    durations = {s.labels["provider"]: s.value for s in samples["bootnode_check_duration_ms"]}
    assert durations == {"A": 1200.0, "B": 3.0}


def test_empty_snapshot_renders_no_samples(make_target) -> None:
    samples = _samples(render_metrics(_snapshot(make_target, [])))
    assert all(not values for values in samples.values())


def test_textfile_is_replaced_each_run(tmp_path: Path, make_target) -> None:
    out = tmp_path / "textfile"
    first = _snapshot(make_target, [("A", "polkadot", FailureReason.TIMEOUT, 30000)])
    second = _snapshot(make_target, [("A", "polkadot", None, 800)])

    path = write_metrics_textfile(first, out)
    assert path == out / METRICS_FILE_NAME
    assert 'failure_reason="timeout"' in path.read_text(encoding="utf-8")

    write_metrics_textfile(second, out)
    text = path.read_text(encoding="utf-8")
    assert "failure_reason" not in text
    assert [p.name for p in out.iterdir()] == [METRICS_FILE_NAME]


def test_results_json_groups_by_provider(tmp_path: Path, make_target) -> None:
    snapshot = _snapshot(
        make_target,
        [("A", "polkadot", None, 10), ("A", "kusama", FailureReason.CONNECTION_REFUSED, 20)],
    )
    path = write_results_json(snapshot, tmp_path)
    payload = json.loads(path.read_text(encoding="utf-8"))

    assert path.name == RESULTS_FILE_NAME
    assert payload["results"]["A"]["polkadot"]["status"] == "up"
    assert payload["results"]["A"]["kusama"]["failure_reason"] == "connection_refused"
    assert payload["anomalies"] == []
    assert not (tmp_path / "results.tmp").exists()


def test_export_snapshot_writes_both_files(tmp_path: Path, make_target) -> None:
    paths = export_snapshot(_snapshot(make_target, [("A", "polkadot", None, 5)]), tmp_path / "out")
    assert Path(paths["metrics"]).exists()
    assert Path(paths["results"]).exists()
