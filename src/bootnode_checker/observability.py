"""Snapshot export: Prometheus textfile metrics and results.json."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator

from prometheus_client import CollectorRegistry, generate_latest, write_to_textfile
from prometheus_client.core import GaugeMetricFamily, Metric

from .collector import RunSnapshot

logger = logging.getLogger(__name__)

METRICS_FILE_NAME = "bootnode_metrics.prom"
RESULTS_FILE_NAME = "results.json"

# Alerting rules key on these names and labels; keep them stable.
STATUS_METRIC = "bootnode_status"
DURATION_METRIC = "bootnode_check_duration_ms"


class SnapshotMetricsCollector:
    """Exposes one run snapshot as gauges; Down samples carry ``failure_reason``."""

    def __init__(self, snapshot: RunSnapshot) -> None:
        self.snapshot = snapshot

    def collect(self) -> Iterator[Metric]:
        status = GaugeMetricFamily(STATUS_METRIC, "Current bootnode status (1=up, 0=down)")
        duration = GaugeMetricFamily(DURATION_METRIC, "Duration of last check in milliseconds")
        for (provider, network), result in sorted(self.snapshot.results.items()):
            labels = {"provider": provider, "network": network}
            status_labels = dict(labels)
            if result.failure_reason is not None:
                status_labels["failure_reason"] = result.failure_reason.value
            status.add_sample(STATUS_METRIC, status_labels, 1.0 if result.is_up else 0.0)
            duration.add_sample(DURATION_METRIC, labels, float(result.duration_ms))
        yield status
        yield duration


def build_registry(snapshot: RunSnapshot) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotMetricsCollector(snapshot))
    return registry


def render_metrics(snapshot: RunSnapshot) -> str:
    return generate_latest(build_registry(snapshot)).decode("utf-8")


def write_metrics_textfile(snapshot: RunSnapshot, output_dir: Path) -> Path:
    path = Path(output_dir) / METRICS_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(path), build_registry(snapshot))
    logger.info("Metrics written path=%s entries=%s", path, len(snapshot))
    return path


def write_results_json(snapshot: RunSnapshot, output_dir: Path) -> Path:
    path = Path(output_dir) / RESULTS_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = snapshot.to_dict()
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(payload, sort_keys=True, ensure_ascii=True, indent=2) + "\n", encoding="utf-8")
    os.replace(tmp_path, path)
    return path


def export_snapshot(snapshot: RunSnapshot, output_dir: Path) -> dict[str, str]:
    return {
        "metrics": str(write_metrics_textfile(snapshot, output_dir)),
        "results": str(write_results_json(snapshot, output_dir)),
    }
