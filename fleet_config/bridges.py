"""
Config -> kernel bridges.

Converts ``FleetConfig`` into the kernel's own types.  These live here
because the kernel never imports ``fleet_config``.

Usage:
    config = get_active_config()
    init_engine_from_url(url, busy_timeout=config.store.busy_timeout_seconds)
    set_retry_policy(build_retry_policy(config))
    allocator = SequenceAllocator(
        session, clock,
        formats=build_control_number_formats(config),
        timezone=build_timezone(config),
    )
"""

from __future__ import annotations

from zoneinfo import ZoneInfo

from fleet_config.schema import FleetConfig
from fleet_kernel.db.engine import RetryPolicy
from fleet_kernel.domain.control_number import (
    ControlNumberFormat,
    CounterScope,
    DocumentKind,
)


def build_control_number_formats(config: FleetConfig) -> dict[DocumentKind, ControlNumberFormat]:
    return {
        DocumentKind(d.kind): ControlNumberFormat(
            kind=DocumentKind(d.kind),
            scope=CounterScope(d.scope),
            prefix=d.prefix,
            seed_offset=d.seed_offset,
            width=d.width,
        )
        for d in config.control_numbers
    }


def build_retry_policy(config: FleetConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.store.max_attempts,
        backoff_seconds=config.store.backoff_seconds,
    )


def build_timezone(config: FleetConfig) -> ZoneInfo:
    return ZoneInfo(config.timezone)
