"""Bootnode catalog loader (bootnodes.json)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError, field_validator

from .errors import ConfigError
from .models import CheckTarget, Role


class NetworkEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    command_id: str = Field(alias="commandId")
    members: dict[str, Union[str, list[str]]]

    @field_validator("command_id")
    @classmethod
    def _strip_command_id(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("commandId must not be empty")
        return text

    @field_validator("members")
    @classmethod
    def _normalize_members(cls, value: dict[str, Union[str, list[str]]]) -> dict[str, Union[str, list[str]]]:
        for provider, addresses in value.items():
            if not provider.strip():
                raise ValueError("provider id must not be empty")
            items = [addresses] if isinstance(addresses, str) else addresses
            if not items:
                raise ValueError(f"provider {provider} lists no bootnodes")
            if any(not item.strip() for item in items):
                raise ValueError(f"provider {provider} lists a blank bootnode address")
        return value

    @property
    def role(self) -> Role:
        return Role.PARACHAIN if self.command_id == "parachain" else Role.RELAY


class BootnodesDocument(RootModel[dict[str, NetworkEntry]]):
    pass


def load_catalog(path: Path, *, chain_spec_dir: Path) -> list[CheckTarget]:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError("CATALOG_UNREADABLE", f"{path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError("CATALOG_INVALID_JSON", f"{path}: {exc}") from exc
    return parse_catalog(payload, chain_spec_dir=chain_spec_dir)


def parse_catalog(payload: object, *, chain_spec_dir: Path) -> list[CheckTarget]:
    try:
        document = BootnodesDocument.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError("CATALOG_SCHEMA_INVALID", _summarize(exc)) from exc

    targets: list[CheckTarget] = []
    seen: set[tuple[str, str, str]] = set()
    for network, entry in document.root.items():
        network_name = network.strip()
        if not network_name:
            raise ConfigError("CATALOG_NETWORK_MISSING")
        for provider, addresses in entry.members.items():
            items = [addresses] if isinstance(addresses, str) else addresses
            for address in items:
                target = CheckTarget(
                    provider=provider.strip(),
                    network=network_name,
                    role=entry.role,
                    bootnode_address=address.strip(),
                    chain_spec_path=Path(chain_spec_dir) / f"{network_name}.json",
                )
                if target.identity in seen:
                    raise ConfigError("CATALOG_DUPLICATE_TARGET", " ".join(target.identity))
                seen.add(target.identity)
                targets.append(target)
    if not targets:
        raise ConfigError("CATALOG_EMPTY")
    return targets


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ()))
        parts.append(f"{loc or '$'}: {err.get('msg')}")
    return "; ".join(parts)
