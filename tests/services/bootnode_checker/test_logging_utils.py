from __future__ import annotations

import logging
from pathlib import Path

import pytest

from bootnode_checker.logging_utils import NARRATIVE_LOGGER, NarrativeFilter, configure_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "message", None, None)


@pytest.mark.parametrize(
    ("name", "level", "kept"),
    [
        (NARRATIVE_LOGGER, logging.INFO, True),
        ("bootnode_checker.scheduler", logging.INFO, False),
        ("bootnode_checker.process", logging.DEBUG, False),
        ("bootnode_checker.allocator", logging.WARNING, True),
        ("bootnode_checker.narrativex", logging.INFO, False),
    ],
)
def test_narrative_filter(name: str, level: int, kept: bool) -> None:
    assert NarrativeFilter().filter(_record(name, level)) is kept


def test_configure_logging_writes_outcomes_to_narrative_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    urllib3_logger = logging.getLogger("urllib3")
    saved_handlers = root.handlers[:]
    root.handlers.clear()
    previous_levels = (root.level, urllib3_logger.level)
    path = tmp_path / "logs" / "outcomes.log"

    configure_logging(logging.DEBUG, narrative_path=path)
    try:
        logging.getLogger(NARRATIVE_LOGGER).info("Bootnode up acme/polkadot")
        logging.getLogger("bootnode_checker.scheduler").info("Dispatching 3 checks")
        logging.getLogger("bootnode_checker.scheduler").warning("Run deadline exceeded")
    finally:
        for handler in list(root.handlers):
            handler.close()
        urllib3_level = urllib3_logger.level
        root.setLevel(previous_levels[0])
        urllib3_logger.setLevel(previous_levels[1])
        root.handlers[:] = saved_handlers

    text = path.read_text(encoding="utf-8")
    assert "Bootnode up acme/polkadot" in text
    assert "Run deadline exceeded" in text
    assert "Dispatching" not in text
    assert urllib3_level == logging.WARNING


def test_configure_logging_leaves_existing_setup_alone(tmp_path: Path) -> None:
    root = logging.getLogger()
    existing = logging.NullHandler()
    root.addHandler(existing)
    try:
        before = root.handlers[:]
        configure_logging(logging.INFO, narrative_path=tmp_path / "outcomes.log")
        assert root.handlers == before
    finally:
        root.removeHandler(existing)
    assert not (tmp_path / "outcomes.log").exists()
