from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from bootnode_checker.config import RunParameters, load_profile, resolve_parameters
from bootnode_checker.errors import ConfigError


def _write_profile(path: Path, payload: dict) -> Path:
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def test_default_parameters() -> None:
    params = resolve_parameters()
    assert params.max_concurrent == 10
    assert params.base_port == 49615
    assert params.timeout_s == 30.0
    assert params.relay_binary == Path("/usr/local/bin/polkadot")
    assert params.parachain_binary == Path("/usr/local/bin/polkadot-parachain")
    assert params.interval_s is None


def test_cli_overrides_win_over_profile(tmp_path: Path) -> None:
    profile = _write_profile(
        tmp_path / "run.yaml",
        {"max_concurrent": 4, "timeout_s": 12, "data_dir": "/var/lib/bootnodes"},
    )
    params = resolve_parameters(
        profile_path=profile,
        overrides={"max_concurrent": 2, "timeout_s": None},
    )
    assert params.max_concurrent == 2
    assert params.timeout_s == 12.0
    assert params.data_dir == Path("/var/lib/bootnodes")


def test_profile_env_references_are_resolved(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOTNODE_OUTPUT_DIR", "/srv/textfile")
    monkeypatch.delenv("BOOTNODE_BASE_PORT", raising=False)
    profile = _write_profile(
        tmp_path / "run.yaml",
        {"output_dir": "${BOOTNODE_OUTPUT_DIR}", "base_port": "${BOOTNODE_BASE_PORT:-50000}"},
    )
    loaded = load_profile(profile)
    assert loaded == {"output_dir": "/srv/textfile", "base_port": "50000"}
    params = resolve_parameters(profile_path=profile)
    assert params.output_dir == Path("/srv/textfile")
    assert params.base_port == 50000


def test_unknown_profile_key_is_rejected(tmp_path: Path) -> None:
    profile = _write_profile(tmp_path / "run.yaml", {"max_concurency": 3})
    with pytest.raises(ConfigError, match="PARAMETER_UNKNOWN"):
        resolve_parameters(profile_path=profile)


@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"max_concurrent": 0}, "MAX_CONCURRENT_INVALID"),
        ({"base_port": 80}, "BASE_PORT_INVALID"),
        ({"timeout_s": 0}, "TIMEOUT_INVALID"),
        ({"min_peers": 0}, "MIN_PEERS_INVALID"),
        ({"max_concurrent": "many"}, "PARAMETER_INVALID"),
    ],
)
def test_invalid_parameters_raise_config_error(overrides: dict, code: str) -> None:
    with pytest.raises(ConfigError, match=code):
        resolve_parameters(overrides=overrides)


def test_profile_must_be_a_mapping(tmp_path: Path) -> None:
    path = tmp_path / "run.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="PROFILE_INVALID"):
        load_profile(path)


def test_with_overrides_keeps_value_object_frozen() -> None:
    base = RunParameters()
    changed = base.with_overrides({"timeout_s": "5"})
    assert changed.timeout_s == 5.0
    assert base.timeout_s == 30.0
