from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from bootnode_checker.allocator import PortLease, ResourceAllocator, WorkDirLease
from bootnode_checker.errors import SpawnError
from bootnode_checker.models import CheckTarget, Role
from bootnode_checker.process import NodeHandle, PeerObservation, ProcessRunner


class FakeProcess:
    def __init__(self, exit_after: float | None, exit_code: int = 1) -> None:
        self.started = time.monotonic()
        self.exit_after = exit_after
        self.exit_code = exit_code
        self.terminated = False

    def poll(self) -> int | None:
        if self.terminated:
            return -15
        if self.exit_after is not None and time.monotonic() - self.started >= self.exit_after:
            return self.exit_code
        return None


class FakeRunner(ProcessRunner):
    """Simulates node behaviour per bootnode address.

    Modes: ``up`` (connects after ``connect_after`` seconds), ``down`` (never
    connects), ``exit`` (process dies), ``error`` (observation errors),
    ``spawn_error``, ``crash`` (observation raises) and ``hang`` (each
    observation blocks for up to ``hang_seconds``).
    """

    def __init__(
        self,
        modes: dict[str, str] | None = None,
        *,
        connect_after: float = 0.0,
        exit_after: float = 0.05,
        hang_seconds: float = 2.0,
    ) -> None:
        self.modes = modes or {}
        self.connect_after = connect_after
        self.exit_after = exit_after
        self.hang_seconds = hang_seconds
        self.lock = threading.Lock()
        self.spawned: list[NodeHandle] = []
        self.terminated: list[NodeHandle] = []
        self.spawn_attempts: list[CheckTarget] = []

    def mode_for(self, target: CheckTarget) -> str:
        return self.modes.get(target.bootnode_address, "up")

    def spawn(self, target: CheckTarget, port: PortLease, workdir: WorkDirLease) -> NodeHandle:
        with self.lock:
            self.spawn_attempts.append(target)
        mode = self.mode_for(target)
        if mode == "spawn_error":
            raise SpawnError("NODE_SPAWN_FAILED", "binary missing")
        process = FakeProcess(exit_after=self.exit_after if mode == "exit" else None)
        handle = NodeHandle(
            target=target,
            pid=None,
            metrics_port=port.metrics_port,
            workdir=workdir.path,
            process=process,
        )
        with self.lock:
            self.spawned.append(handle)
        return handle

    def observe_connection(self, handle: NodeHandle, timeout_seconds: float | None = None) -> PeerObservation:
        mode = self.mode_for(handle.target)
        if mode == "hang":
            time.sleep(min(self.hang_seconds, timeout_seconds if timeout_seconds is not None else self.hang_seconds))
            return PeerObservation.NOT_YET_CONNECTED
        if mode == "crash":
            raise RuntimeError("SCRAPE_EXPLODED")
        if mode == "error":
            return PeerObservation.ERRORED
        if mode == "up" and time.monotonic() - handle.process.started >= self.connect_after:
            return PeerObservation.CONNECTED
        return PeerObservation.NOT_YET_CONNECTED

    def terminate(self, handle: NodeHandle, grace_seconds: float) -> None:
        handle.process.terminated = True
        with self.lock:
            self.terminated.append(handle)


class TrackingAllocator(ResourceAllocator):
    """Records how many port leases are live at once and any port collisions."""

    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.track_lock = threading.Lock()
        self.live_ports: set[int] = set()
        self.peak_live = 0
        self.collisions = 0
        self.acquired = 0

    def acquire_port(self) -> PortLease:
        lease = super().acquire_port()
        with self.track_lock:
            if lease.port in self.live_ports:
                self.collisions += 1
            self.live_ports.add(lease.port)
            self.acquired += 1
            self.peak_live = max(self.peak_live, len(self.live_ports))
        return lease

    def release(self, lease: PortLease | WorkDirLease | None) -> None:
        if isinstance(lease, PortLease) and not lease.released:
            with self.track_lock:
                self.live_ports.discard(lease.port)
        super().release(lease)


@pytest.fixture
def make_target(tmp_path: Path) -> Callable[..., CheckTarget]:
    chain_dir = tmp_path / "chain-spec"
    chain_dir.mkdir(exist_ok=True)

    def _make(
        provider: str = "A",
        network: str = "polkadot",
        address: str | None = None,
        role: Role = Role.RELAY,
    ) -> CheckTarget:
        return CheckTarget(
            provider=provider,
            network=network,
            role=role,
            bootnode_address=address or f"/dns/{provider.lower()}.{network}.example/tcp/30333/p2p/12D3KooW{provider}",
            chain_spec_path=chain_dir / f"{network}.json",
        )

    return _make


@pytest.fixture
def allocator(tmp_path: Path) -> TrackingAllocator:
    return TrackingAllocator(base_port=40000, data_dir=tmp_path / "data")


@pytest.fixture
def fake_runner_cls() -> type[FakeRunner]:
    return FakeRunner
