"""Check targets, per-check states and results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class Role(str, Enum):
    RELAY = "relay"
    PARACHAIN = "parachain"


class CheckStatus(str, Enum):
    UP = "up"
    DOWN = "down"


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    PROCESS_ERROR = "process_error"
    SPAWN_ERROR = "spawn_error"


class CheckState(str, Enum):
    PENDING = "PENDING"
    ALLOCATING = "ALLOCATING"
    SPAWNING = "SPAWNING"
    AWAITING_CONNECTION = "AWAITING_CONNECTION"
    CONNECTED = "CONNECTED"
    TIMED_OUT = "TIMED_OUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    PROCESS_ERRORED = "PROCESS_ERRORED"
    SPAWN_FAILED = "SPAWN_FAILED"
    RELEASED = "RELEASED"
    REPORTED = "REPORTED"


# Terminal states of the polling phase and the reason each one reports.
TERMINAL_REASONS: dict[CheckState, FailureReason | None] = {
    CheckState.CONNECTED: None,
    CheckState.TIMED_OUT: FailureReason.TIMEOUT,
    CheckState.CONNECTION_REFUSED: FailureReason.CONNECTION_REFUSED,
    CheckState.PROCESS_ERRORED: FailureReason.PROCESS_ERROR,
    CheckState.SPAWN_FAILED: FailureReason.SPAWN_ERROR,
}


@dataclass(frozen=True)
class CheckTarget:
    provider: str
    network: str
    role: Role
    bootnode_address: str
    chain_spec_path: Path

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.provider, self.network, self.bootnode_address)

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.network)

    @property
    def relay_chain(self) -> str | None:
        """Relay chain a parachain attaches to, taken from the network name suffix."""
        if self.role is not Role.PARACHAIN:
            return None
        return self.network.split("-")[-1]

    def label(self) -> str:
        return f"{self.provider}/{self.network}"


@dataclass(frozen=True)
class CheckResult:
    target: CheckTarget
    status: CheckStatus
    duration_ms: int
    completed_at: datetime
    failure_reason: FailureReason | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        if self.duration_ms < 0:
            raise ValueError("duration_ms must be >= 0")
        if self.status is CheckStatus.DOWN and self.failure_reason is None:
            raise ValueError("failure_reason is required when status is down")
        if self.status is CheckStatus.UP and self.failure_reason is not None:
            raise ValueError("failure_reason must be empty when status is up")

    @property
    def is_up(self) -> bool:
        return self.status is CheckStatus.UP

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.target.provider,
            "network": self.target.network,
            "role": self.target.role.value,
            "bootnode": self.target.bootnode_address,
            "status": self.status.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "duration_ms": self.duration_ms,
            "completed_at_utc": self.completed_at.isoformat(),
            "detail": self.detail,
        }
