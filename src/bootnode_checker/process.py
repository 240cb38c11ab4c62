"""Node process control: spawn, peer observation and termination."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import os
from pathlib import Path
import signal
import subprocess
import time
from typing import Any

from prometheus_client.parser import text_string_to_metric_families
import psutil
import requests

from .allocator import PortLease, WorkDirLease
from .errors import SpawnError
from .models import CheckTarget, Role

logger = logging.getLogger(__name__)

PEERS_CONNECTED_METRIC = "substrate_sub_libp2p_peers_count"
PEERS_DISCOVERED_METRIC = "substrate_sub_libp2p_peerset_num_discovered"
NODE_LOG_NAME = "node.log"
MIN_SCRAPE_TIMEOUT_SECONDS = 0.05
_GROUP_POLL_SECONDS = 0.05


class PeerObservation(str, Enum):
    CONNECTED = "CONNECTED"
    NOT_YET_CONNECTED = "NOT_YET_CONNECTED"
    ERRORED = "ERRORED"


@dataclass
class NodeHandle:
    """A spawned node. ``process`` is whatever the runner needs to control it."""

    target: CheckTarget
    pid: int | None
    metrics_port: int
    workdir: Path
    process: Any = None

    def poll(self) -> int | None:
        if self.process is None:
            return None
        return self.process.poll()


class ProcessRunner:
    """Capability consumed by CheckWorker."""

    def spawn(self, target: CheckTarget, port: PortLease, workdir: WorkDirLease) -> NodeHandle:
        raise NotImplementedError

    def observe_connection(self, handle: NodeHandle, timeout_seconds: float | None = None) -> PeerObservation:
        """One observation, returning within ``timeout_seconds`` when given."""
        raise NotImplementedError

    def exit_code(self, handle: NodeHandle) -> int | None:
        return handle.poll()

    def terminate(self, handle: NodeHandle, grace_seconds: float) -> None:
        raise NotImplementedError


def build_node_command(
    *,
    binary: Path,
    target: CheckTarget,
    port: PortLease,
    workdir: Path,
    relay_rpc_url_template: str,
) -> list[str]:
    command = [
        str(binary),
        "--no-hardware-benchmarks",
        "--no-mdns",
        "--prometheus-external",
        f"--prometheus-port={port.metrics_port}",
        f"--port={port.port}",
        "-d",
        str(workdir),
        "--chain",
        str(target.chain_spec_path),
        "--bootnodes",
        target.bootnode_address,
    ]
    relay = target.relay_chain
    if relay:
        command.extend(["--relay-chain-rpc-urls", relay_rpc_url_template.format(relay=relay)])
    return command


def parse_peer_counts(metrics_text: str) -> dict[str, float]:
    """Return the highest connected/discovered peer counts in a node's metrics page."""
    counts: dict[str, float] = {}
    wanted = {PEERS_CONNECTED_METRIC: "connected", PEERS_DISCOVERED_METRIC: "discovered"}
    for family in text_string_to_metric_families(metrics_text):
        for sample in family.samples:
            key = wanted.get(sample.name)
            if key is None:
                continue
            counts[key] = max(counts.get(key, 0.0), float(sample.value))
    return counts


class NodeProcessRunner(ProcessRunner):
    """Runs the relay-chain or parachain node binary and scrapes its metrics endpoint."""

    def __init__(
        self,
        *,
        relay_binary: Path,
        parachain_binary: Path,
        relay_rpc_url_template: str,
        min_peers: int = 1,
        scrape_timeout_seconds: float = 2.0,
        session: requests.Session | None = None,
    ) -> None:
        self.relay_binary = Path(relay_binary)
        self.parachain_binary = Path(parachain_binary)
        self.relay_rpc_url_template = relay_rpc_url_template
        self.min_peers = int(min_peers)
        self.scrape_timeout_seconds = float(scrape_timeout_seconds)
        self._session = session or requests.Session()

    def binary_for(self, role: Role) -> Path:
        return self.parachain_binary if role is Role.PARACHAIN else self.relay_binary

    def spawn(self, target: CheckTarget, port: PortLease, workdir: WorkDirLease) -> NodeHandle:
        if not Path(target.chain_spec_path).exists():
            raise SpawnError("CHAIN_SPEC_MISSING", str(target.chain_spec_path))
        command = build_node_command(
            binary=self.binary_for(target.role),
            target=target,
            port=port,
            workdir=workdir.path,
            relay_rpc_url_template=self.relay_rpc_url_template,
        )
        log_path = workdir.path / NODE_LOG_NAME
        handle = log_path.open("a", encoding="utf-8")
        popen_kwargs: dict[str, Any] = {
            "stdout": handle,
            "stderr": subprocess.STDOUT,
            "stdin": subprocess.DEVNULL,
            "cwd": str(workdir.path),
            "shell": False,
        }
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_kwargs["start_new_session"] = True
        try:
            process = subprocess.Popen(command, **popen_kwargs)  # noqa: S603
        except OSError as exc:
            raise SpawnError("NODE_SPAWN_FAILED", f"{command[0]}: {exc}") from exc
        finally:
            # The child keeps inherited handles; close parent handle immediately.
            handle.close()
        logger.debug(
            "Node spawned target=%s pid=%s p2p_port=%s metrics_port=%s",
            target.label(),
            process.pid,
            port.port,
            port.metrics_port,
        )
        return NodeHandle(
            target=target,
            pid=process.pid,
            metrics_port=port.metrics_port,
            workdir=workdir.path,
            process=process,
        )

    def scrape_timeout(self, timeout_seconds: float | None = None) -> float:
        if timeout_seconds is None:
            return self.scrape_timeout_seconds
        return max(MIN_SCRAPE_TIMEOUT_SECONDS, min(self.scrape_timeout_seconds, float(timeout_seconds)))

    def observe_connection(self, handle: NodeHandle, timeout_seconds: float | None = None) -> PeerObservation:
        url = f"http://127.0.0.1:{handle.metrics_port}/metrics"
        try:
            response = self._session.get(url, timeout=self.scrape_timeout(timeout_seconds))
        except requests.RequestException as exc:
            logger.debug("Metrics endpoint not ready target=%s error=%s", handle.target.label(), exc)
            return PeerObservation.NOT_YET_CONNECTED
        if not response.ok:
            return PeerObservation.NOT_YET_CONNECTED
        try:
            counts = parse_peer_counts(response.text)
        except ValueError as exc:
            logger.warning("Unparsable node metrics target=%s error=%s", handle.target.label(), exc)
            return PeerObservation.ERRORED
        peers = max(counts.get("connected", 0.0), counts.get("discovered", 0.0))
        if peers >= self.min_peers:
            return PeerObservation.CONNECTED
        return PeerObservation.NOT_YET_CONNECTED

    def terminate(self, handle: NodeHandle, grace_seconds: float) -> None:
        """Stop the node and everything it started, then reap it.

        On POSIX the node leads its own session, so its pid is the process group
        id. The whole group is signalled, also after the node itself exited.
        """
        if handle.pid is None:
            return
        if os.name == "nt":
            self._terminate_tree(handle, grace_seconds)
        else:
            self._terminate_group(handle, grace_seconds)
        if handle.process is not None:
            try:
                handle.process.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                logger.warning("Node did not exit after kill target=%s pid=%s", handle.target.label(), handle.pid)

    def _terminate_group(self, handle: NodeHandle, grace_seconds: float) -> None:
        pgid = handle.pid
        if not _signal_group(pgid, signal.SIGTERM):
            return
        if _wait_group(handle, pgid, grace_seconds):
            return
        logger.warning(
            "Node process group still running after terminate, killing target=%s pgid=%s",
            handle.target.label(),
            pgid,
        )
        _signal_group(pgid, signal.SIGKILL)
        if not _wait_group(handle, pgid, max(1.0, grace_seconds)):
            logger.warning("Node process group survived kill target=%s pgid=%s", handle.target.label(), pgid)

    def _terminate_tree(self, handle: NodeHandle, grace_seconds: float) -> None:
        if handle.poll() is not None:
            return
        try:
            parent = psutil.Process(handle.pid)
            procs = [parent, *parent.children(recursive=True)]
        except psutil.NoSuchProcess:
            return
        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
        _, alive = psutil.wait_procs(procs, timeout=max(0.0, grace_seconds))
        if alive:
            logger.warning(
                "Node still running after terminate, killing target=%s pids=%s",
                handle.target.label(),
                [proc.pid for proc in alive],
            )
            for proc in alive:
                try:
                    proc.kill()
                except psutil.NoSuchProcess:
                    continue
            psutil.wait_procs(alive, timeout=max(1.0, grace_seconds))


def _signal_group(pgid: int, sig: signal.Signals) -> bool:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    return True


def group_members(pgid: int) -> list[psutil.Process]:
    """Live (non-zombie) processes whose process group is ``pgid``."""
    members: list[psutil.Process] = []
    for proc in psutil.process_iter():
        try:
            if os.getpgid(proc.pid) != pgid:
                continue
            if proc.status() == psutil.STATUS_ZOMBIE:
                continue
        except (psutil.Error, OSError):
            continue
        members.append(proc)
    return members


def _wait_group(handle: NodeHandle, pgid: int, timeout_seconds: float) -> bool:
    deadline = time.monotonic() + max(0.0, timeout_seconds)
    while True:
        # Reap the node so it is not counted as a live member.
        handle.poll()
        if not group_members(pgid):
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(_GROUP_POLL_SECONDS)
