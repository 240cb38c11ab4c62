"""CLI entrypoint for the bootnode checker."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
import time
from typing import Any, Sequence

from .allocator import ResourceAllocator
from .catalog import load_catalog
from .config import RunParameters, resolve_parameters
from .errors import ConfigError
from .logging_utils import configure_logging
from .models import CheckTarget, Role
from .observability import export_snapshot
from .process import NodeProcessRunner, ProcessRunner
from .scheduler import RunSummary, WorkerPool

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bootnode-checker",
        description="Parallel bootnode reachability checker for relay chains and parachains",
    )
    parser.add_argument("--config", default="bootnodes.json", help="Bootnode catalog JSON")
    parser.add_argument("--profile", default=None, help="Run parameter profile YAML")
    parser.add_argument("--relay-binary", dest="relay_binary", default=None)
    parser.add_argument("--parachain-binary", dest="parachain_binary", default=None)
    parser.add_argument("--output-dir", dest="output_dir", default=None, help="Metrics and results.json directory")
    parser.add_argument("--data-dir", dest="data_dir", default=None, help="Root for per-check node directories")
    parser.add_argument("--chain-spec-dir", dest="chain_spec_dir", default=None)
    parser.add_argument("--max-concurrent", dest="max_concurrent", type=int, default=None)
    parser.add_argument("--base-port", dest="base_port", type=int, default=None)
    parser.add_argument("--timeout", dest="timeout_s", type=float, default=None, help="Per-check deadline (seconds)")
    parser.add_argument("--poll-interval", dest="poll_interval_s", type=float, default=None)
    parser.add_argument("--min-peers", dest="min_peers", type=int, default=None)
    parser.add_argument("--interval", dest="interval_s", type=float, default=None, help="Repeat runs every N seconds")
    parser.add_argument("--run-deadline", dest="run_deadline_s", type=float, default=None)
    parser.add_argument("--log-file", default=None, help="Narrative log file (warnings and check outcomes)")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--json", action="store_true", help="Print each run summary as JSON")
    return parser


_OVERRIDE_KEYS = (
    "relay_binary",
    "parachain_binary",
    "output_dir",
    "data_dir",
    "chain_spec_dir",
    "max_concurrent",
    "base_port",
    "timeout_s",
    "poll_interval_s",
    "min_peers",
    "interval_s",
    "run_deadline_s",
)


def require_binaries(params: RunParameters, catalog: Sequence[CheckTarget]) -> None:
    roles = {target.role for target in catalog}
    if Role.RELAY in roles and not str(params.relay_binary).strip():
        raise ConfigError("RELAY_BINARY_MISSING")
    if Role.PARACHAIN in roles and not str(params.parachain_binary).strip():
        raise ConfigError("PARACHAIN_BINARY_MISSING")


def build_runner(params: RunParameters) -> NodeProcessRunner:
    return NodeProcessRunner(
        relay_binary=params.relay_binary,
        parachain_binary=params.parachain_binary,
        relay_rpc_url_template=params.relay_rpc_url_template,
        min_peers=params.min_peers,
    )


def run_cycle(params: RunParameters, catalog: Sequence[CheckTarget], runner: ProcessRunner) -> RunSummary:
    pool = WorkerPool(
        allocator=ResourceAllocator(base_port=params.base_port, data_dir=params.data_dir),
        runner=runner,
        poll_interval_seconds=params.poll_interval_s,
        terminate_grace_seconds=params.terminate_grace_s,
    )
    summary = pool.dispatch(
        catalog,
        max_concurrent=params.max_concurrent,
        timeout_seconds=params.timeout_s,
        run_deadline_seconds=params.run_deadline_s,
    )
    export_snapshot(summary.snapshot, params.output_dir)
    _log_summary(summary)
    return summary


def _log_summary(summary: RunSummary) -> None:
    logger.info(
        "Run completed: %s/%s up, %s down, %s skipped. Duration: %sms",
        summary.up_count,
        summary.total,
        summary.down_count,
        len(summary.skipped),
        summary.elapsed_ms,
    )
    failed = summary.failed()
    if failed:
        logger.info("Failed bootnodes:")
        for result in failed:
            reason = result.failure_reason.value if result.failure_reason else "-"
            logger.info("- %s: %s (%s)", result.target.label(), result.target.bootnode_address, reason)
    for anomaly in summary.snapshot.anomalies:
        logger.warning("Duplicate result key %s/%s", anomaly.provider, anomaly.network)


def _emit(summary: RunSummary, as_json: bool) -> None:
    if as_json:
        sys.stdout.write(json.dumps(summary.to_dict(), sort_keys=True) + "\n")
        sys.stdout.flush()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        narrative_path=args.log_file,
    )
    overrides: dict[str, Any] = {key: getattr(args, key) for key in _OVERRIDE_KEYS}
    try:
        params = resolve_parameters(
            profile_path=Path(args.profile) if args.profile else None,
            overrides=overrides,
        )
        catalog = load_catalog(Path(args.config), chain_spec_dir=params.chain_spec_dir)
        require_binaries(params, catalog)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR

    runner = build_runner(params)
    logger.info("Loaded %s bootnode targets from %s", len(catalog), args.config)
    try:
        while True:
            cycle_start = time.monotonic()
            if params.interval_s is None:
                _emit(run_cycle(params, catalog, runner), args.json)
                return EXIT_OK
            try:
                _emit(run_cycle(params, catalog, runner), args.json)
            except Exception:
                logger.exception("Bootnode run cycle failed; continuing with next cycle")
            delay = params.interval_s - (time.monotonic() - cycle_start)
            if delay > 0:
                logger.info("Waiting %.1fs before next run", delay)
                time.sleep(delay)
            else:
                logger.info("Run took longer than interval, starting next run immediately")
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping")
        return EXIT_OK
    except Exception:
        logger.exception("Bootnode run failed")
        return EXIT_RUN_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
