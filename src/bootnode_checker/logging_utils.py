"""Logging setup for the bootnode checker."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
import sys

NARRATIVE_LOGGER = "bootnode_checker.narrative"

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
NARRATIVE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Per-poll connection chatter from the metrics scraper.
_NOISY_LOGGERS = ("urllib3", "urllib3.connectionpool")


class NarrativeFilter(logging.Filter):
    """Keeps check outcomes and warnings; drops scheduling and scrape detail."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        return record.name == NARRATIVE_LOGGER or record.name.startswith(NARRATIVE_LOGGER + ".")


def narrative_handler(path: str | Path) -> logging.Handler:
    """Outcome log that follows logrotate moves during ``--interval`` runs."""
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.WatchedFileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(NARRATIVE_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(NarrativeFilter())
    return handler


def configure_logging(level: int = logging.INFO, narrative_path: str | Path | None = None) -> None:
    """Configure root logging once; a host that already configured logging wins.

    Console output goes to stderr so stdout carries only ``--json`` summaries.
    """
    root = logging.getLogger()
    if root.handlers:
        return
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    handlers: list[logging.Handler] = [console]
    if narrative_path:
        handlers.append(narrative_handler(narrative_path))
    logging.basicConfig(level=level, handlers=handlers)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
