"""Bootnode checker error taxonomy and helpers."""

from __future__ import annotations


class BootnodeCheckError(RuntimeError):
    """Stable error surfaced as an upper-case reason code."""

    code = "CHECK_ERROR"

    def __init__(self, code: str | None = None, detail: str | None = None) -> None:
        if code:
            self.code = code
        self.detail = detail
        message = f"{self.code}:{detail}" if detail else self.code
        super().__init__(message)


class AllocationError(BootnodeCheckError):
    """Port or work directory could not be leased. Check-local."""

    code = "ALLOCATION_FAILED"


class SpawnError(BootnodeCheckError):
    """Node process could not be created. Check-local."""

    code = "SPAWN_FAILED"


class ConfigError(BootnodeCheckError):
    """Catalog or run parameters are unusable. Aborts the run before dispatch."""

    code = "CONFIG_INVALID"


def reason_code(exc: BaseException) -> str:
    if isinstance(exc, BootnodeCheckError):
        return exc.code
    text = str(exc or "").strip()
    if text.isupper():
        return text
    if ":" in text:
        head = text.split(":", 1)[0].strip()
        if head.isupper():
            return head
    return "INTERNAL_ERROR"
