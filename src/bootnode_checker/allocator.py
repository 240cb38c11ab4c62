"""Port and work-directory leasing for concurrently running checks."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import re
import shutil
import tempfile
import threading

from .errors import AllocationError
from .models import CheckTarget

logger = logging.getLogger(__name__)

MAX_PORT = 65535
PORTS_PER_LEASE = 2
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class PortLease:
    slot: int
    port: int
    metrics_port: int
    released: bool = field(default=False, compare=False)


@dataclass
class WorkDirLease:
    path: Path
    released: bool = field(default=False, compare=False)


class ResourceAllocator:
    """Hands out non-overlapping port pairs and fresh directories under ``data_dir``.

    Slot ``i`` maps to ports ``base_port + 2*i`` (p2p) and ``base_port + 2*i + 1``
    (node metrics). The lowest free slot is always issued, so released ports are
    reused by later leases but never while still held.
    """

    def __init__(self, *, base_port: int, data_dir: Path) -> None:
        self.base_port = int(base_port)
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._held_slots: set[int] = set()

    def acquire_port(self) -> PortLease:
        with self._lock:
            slot = 0
            while slot in self._held_slots:
                slot += 1
            port = self.base_port + slot * PORTS_PER_LEASE
            if port + PORTS_PER_LEASE - 1 > MAX_PORT:
                raise AllocationError("PORT_RANGE_EXHAUSTED", f"base_port={self.base_port} slot={slot}")
            self._held_slots.add(slot)
        return PortLease(slot=slot, port=port, metrics_port=port + 1)

    def acquire_workdir(self, target: CheckTarget) -> WorkDirLease:
        prefix = _UNSAFE_CHARS.sub("_", f"{target.provider}_{target.network}") + "_"
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            path = tempfile.mkdtemp(prefix=prefix, dir=str(self.data_dir))
        except OSError as exc:
            raise AllocationError("WORKDIR_CREATE_FAILED", f"{self.data_dir}: {exc}") from exc
        return WorkDirLease(path=Path(path))

    def release(self, lease: PortLease | WorkDirLease | None) -> None:
        if lease is None:
            return
        if isinstance(lease, PortLease):
            with self._lock:
                if lease.released:
                    return
                lease.released = True
                self._held_slots.discard(lease.slot)
            return
        with self._lock:
            if lease.released:
                return
            lease.released = True
        try:
            shutil.rmtree(lease.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Work directory removal failed path=%s error=%s", lease.path, exc)

    def held_ports(self) -> list[int]:
        with self._lock:
            return sorted(self.base_port + slot * PORTS_PER_LEASE for slot in self._held_slots)
