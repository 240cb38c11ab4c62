"""Thread-safe accumulation of check results into a run snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
from types import MappingProxyType
from typing import Any, Mapping

from .models import CheckResult

logger = logging.getLogger(__name__)

SnapshotKey = tuple[str, str]


@dataclass(frozen=True)
class DuplicateResult:
    """Second write to a (provider, network) key within one run."""

    provider: str
    network: str
    previous_bootnode: str
    bootnode: str

    def to_dict(self) -> dict[str, str]:
        return {
            "provider": self.provider,
            "network": self.network,
            "previous_bootnode": self.previous_bootnode,
            "bootnode": self.bootnode,
        }


@dataclass(frozen=True)
class RunSnapshot:
    results: Mapping[SnapshotKey, CheckResult]
    anomalies: tuple[DuplicateResult, ...] = ()
    generated_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def __len__(self) -> int:
        return len(self.results)

    def status_map(self) -> dict[SnapshotKey, str]:
        return {key: result.status.value for key, result in self.results.items()}

    def up(self) -> list[CheckResult]:
        return [result for result in self.results.values() if result.is_up]

    def down(self) -> list[CheckResult]:
        return [result for result in self.results.values() if not result.is_up]

    def to_dict(self) -> dict[str, Any]:
        providers: dict[str, dict[str, Any]] = {}
        for (provider, network), result in sorted(self.results.items()):
            providers.setdefault(provider, {})[network] = result.to_dict()
        return {
            "generated_at_utc": self.generated_at.isoformat(),
            "results": providers,
            "anomalies": [item.to_dict() for item in self.anomalies],
        }


class ResultCollector:
    """Latest result per (provider, network), passed explicitly to every worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[SnapshotKey, CheckResult] = {}
        self._anomalies: list[DuplicateResult] = []

    def record(self, result: CheckResult) -> bool:
        """Store ``result``; returns False when the key was already written this run."""
        key = result.target.key
        with self._lock:
            previous = self._results.get(key)
            self._results[key] = result
            if previous is None:
                return True
            anomaly = DuplicateResult(
                provider=key[0],
                network=key[1],
                previous_bootnode=previous.target.bootnode_address,
                bootnode=result.target.bootnode_address,
            )
            self._anomalies.append(anomaly)
        logger.warning(
            "Duplicate result for %s/%s previous_bootnode=%s bootnode=%s",
            anomaly.provider,
            anomaly.network,
            anomaly.previous_bootnode,
            anomaly.bootnode,
        )
        return False

    @property
    def anomalies(self) -> list[DuplicateResult]:
        with self._lock:
            return list(self._anomalies)

    def snapshot(self) -> RunSnapshot:
        with self._lock:
            results = MappingProxyType(dict(self._results))
            anomalies = tuple(self._anomalies)
        return RunSnapshot(results=results, anomalies=anomalies)
