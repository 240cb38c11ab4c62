"""Run parameters: defaults, YAML profile and command-line overrides."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
import os
from pathlib import Path
import re
from typing import Any, Mapping

import yaml

from .errors import ConfigError

_ENV_PATTERN = re.compile(r"^\$\{([^}:]+)(?::-([^}]*))?\}$")
_PATH_FIELDS = {"relay_binary", "parachain_binary", "output_dir", "data_dir", "chain_spec_dir"}
_INT_FIELDS = {"max_concurrent", "base_port", "min_peers"}
_FLOAT_FIELDS = {"timeout_s", "poll_interval_s", "terminate_grace_s", "interval_s", "run_deadline_s"}


@dataclass(frozen=True)
class RunParameters:
    relay_binary: Path = Path("/usr/local/bin/polkadot")
    parachain_binary: Path = Path("/usr/local/bin/polkadot-parachain")
    output_dir: Path = Path("/tmp/bootnode_tests")
    data_dir: Path = Path("/tmp/bootnode_data")
    chain_spec_dir: Path = Path("./chain-spec")
    max_concurrent: int = 10
    base_port: int = 49615
    timeout_s: float = 30.0
    poll_interval_s: float = 0.5
    terminate_grace_s: float = 5.0
    min_peers: int = 1
    relay_rpc_url_template: str = "wss://{relay}.dotters.network/"
    interval_s: float | None = None
    run_deadline_s: float | None = None

    def validate(self) -> "RunParameters":
        if self.max_concurrent < 1:
            raise ConfigError("MAX_CONCURRENT_INVALID", str(self.max_concurrent))
        if not 1024 <= self.base_port <= 65534:
            raise ConfigError("BASE_PORT_INVALID", str(self.base_port))
        if self.timeout_s <= 0:
            raise ConfigError("TIMEOUT_INVALID", str(self.timeout_s))
        if self.poll_interval_s <= 0:
            raise ConfigError("POLL_INTERVAL_INVALID", str(self.poll_interval_s))
        if self.terminate_grace_s < 0:
            raise ConfigError("TERMINATE_GRACE_INVALID", str(self.terminate_grace_s))
        if self.min_peers < 1:
            raise ConfigError("MIN_PEERS_INVALID", str(self.min_peers))
        if "{relay}" not in self.relay_rpc_url_template:
            raise ConfigError("RELAY_RPC_TEMPLATE_INVALID", self.relay_rpc_url_template)
        if self.interval_s is not None and self.interval_s <= 0:
            raise ConfigError("INTERVAL_INVALID", str(self.interval_s))
        if self.run_deadline_s is not None and self.run_deadline_s <= 0:
            raise ConfigError("RUN_DEADLINE_INVALID", str(self.run_deadline_s))
        return self

    def with_overrides(self, overrides: Mapping[str, Any]) -> "RunParameters":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **_coerce(values))


def load_profile(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError("PROFILE_UNREADABLE", f"{path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError("PROFILE_INVALID_YAML", f"{path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("PROFILE_INVALID", f"{path}: expected a mapping")
    return {str(key): _resolve_env(value) for key, value in data.items()}


def resolve_parameters(
    *,
    profile_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RunParameters:
    """Defaults < profile < explicit overrides."""
    params = RunParameters()
    if profile_path is not None:
        params = params.with_overrides(load_profile(profile_path))
    if overrides:
        params = params.with_overrides(overrides)
    return params.validate()


def _coerce(values: Mapping[str, Any]) -> dict[str, Any]:
    known = {item.name for item in fields(RunParameters)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError("PARAMETER_UNKNOWN", ",".join(unknown))
    out: dict[str, Any] = {}
    for key, value in values.items():
        try:
            if key in _PATH_FIELDS:
                out[key] = Path(str(value))
            elif key in _INT_FIELDS:
                out[key] = int(value)
            elif key in _FLOAT_FIELDS:
                out[key] = float(value)
            else:
                out[key] = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError("PARAMETER_INVALID", f"{key}={value!r}") from exc
    return out


def _resolve_env(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if not match:
        return value
    resolved = os.getenv(match.group(1))
    if resolved in (None, ""):
        return match.group(2)
    return resolved
