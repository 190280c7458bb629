"""
Configuration loader (``fleet_config.loader``).

Responsibility
--------------
Reads a YAML file and parses it into ``fleet_config.schema`` dataclasses,
validating every field on the way.  Runtime callers go through
``fleet_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
Every problem (missing file, malformed YAML, missing or invalid keys,
unknown timezone) raises ``ConfigError`` naming the source file.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from fleet_config.schema import ControlNumberDef, FleetConfig, StoreSettings
from fleet_kernel.exceptions import ConfigError

_KINDS = ("DTT", "RIS")
_SCOPES = ("year", "month")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(str(path), "file not found") from None
    except yaml.YAMLError as exc:
        raise ConfigError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of the raw document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _require(data: dict[str, Any], key: str, source: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigError(source, f"missing required key {key!r}")
    return data[key]


def parse_store(data: dict[str, Any], source: str) -> StoreSettings:
    defaults = StoreSettings()
    try:
        store = StoreSettings(
            max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
            backoff_seconds=float(data.get("backoff_seconds", defaults.backoff_seconds)),
            busy_timeout_seconds=float(
                data.get("busy_timeout_seconds", defaults.busy_timeout_seconds)
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(source, f"store: {exc}") from exc
    if store.max_attempts < 1:
        raise ConfigError(source, "store.max_attempts must be at least 1")
    if store.backoff_seconds < 0 or store.busy_timeout_seconds < 0:
        raise ConfigError(source, "store timings must not be negative")
    return store


def parse_control_number(data: dict[str, Any], source: str) -> ControlNumberDef:
    kind = str(_require(data, "kind", source)).upper()
    if kind not in _KINDS:
        raise ConfigError(source, f"unknown control-number kind {kind!r}")
    scope = str(_require(data, "scope", source)).lower()
    if scope not in _SCOPES:
        raise ConfigError(source, f"{kind}: scope must be one of {_SCOPES}")
    try:
        width = int(data.get("width", 4))
        seed = int(data.get("seed_offset", 0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(source, f"{kind}: {exc}") from exc
    if width < 1:
        raise ConfigError(source, f"{kind}: width must be positive")
    if not 0 <= seed < 10 ** width - 1:
        raise ConfigError(source, f"{kind}: seed_offset {seed} does not fit {width} digits")
    prefix = data.get("prefix")
    return ControlNumberDef(
        kind=kind,
        scope=scope,
        prefix=str(prefix).upper() if prefix else None,
        seed_offset=seed,
        width=width,
    )


def parse_config(data: dict[str, Any], source: str = "<memory>") -> FleetConfig:
    """Validate a raw document and build the FleetConfig."""
    timezone = str(_require(data, "timezone", source))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(source, f"unknown timezone {timezone!r}") from None

    raw_numbers = _require(data, "control_numbers", source)
    if not isinstance(raw_numbers, list):
        raise ConfigError(source, "control_numbers must be a list")
    numbers = tuple(parse_control_number(n, source) for n in raw_numbers)
    kinds = [n.kind for n in numbers]
    if sorted(kinds) != sorted(_KINDS):
        raise ConfigError(source, f"control_numbers must define each of {_KINDS} once")

    return FleetConfig(
        config_id=str(data.get("config_id", "fleet")),
        version=int(data.get("version", 1)),
        timezone=timezone,
        store=parse_store(data.get("store") or {}, source),
        control_numbers=numbers,
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> FleetConfig:
    return parse_config(load_yaml_file(path), str(path))
