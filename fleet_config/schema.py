"""
Fleet configuration schema.

Frozen dataclasses the YAML source is parsed into.  Kernel types are not
used here; ``fleet_config.bridges`` converts these into the kernel's
control-number formats and retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StoreSettings:
    """Transaction retry budget for transient store errors."""

    max_attempts: int = 5
    backoff_seconds: float = 0.05
    busy_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ControlNumberDef:
    """Format of one control-number kind (DTT, RIS)."""

    kind: str
    scope: str  # "year" | "month"
    prefix: str | None = None
    seed_offset: int = 0
    width: int = 4


@dataclass(frozen=True)
class FleetConfig:
    """The whole configuration: the only object ``get_active_config`` returns."""

    config_id: str
    version: int
    timezone: str
    store: StoreSettings
    control_numbers: tuple[ControlNumberDef, ...]
    checksum: str = field(default="", compare=False)

    def control_number(self, kind: str) -> ControlNumberDef:
        for definition in self.control_numbers:
            if definition.kind == kind:
                return definition
        raise KeyError(kind)
