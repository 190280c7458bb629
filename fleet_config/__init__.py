"""
fleet_config -- single public entrypoint for fleet configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It reads the file named by ``FLEET_CONFIG`` (or the
    packaged ``defaults.yaml``), validates it and returns a frozen
    ``FleetConfig``.

Architecture position:
    Sits above ``fleet_kernel``.  The kernel never imports this package;
    ``fleet_config.bridges`` turns the config into kernel types.

Failure modes:
    - ``ConfigError`` for a missing file, malformed YAML or invalid values.

Audit relevance:
    Every load emits a ``FLEET_CONFIG_TRACE`` log entry with the config id,
    version and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fleet_config.loader import load_config
from fleet_config.schema import ControlNumberDef, FleetConfig, StoreSettings

_logger = logging.getLogger("fleet_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "FLEET_CONFIG"


def get_active_config(path: Path | str | None = None) -> FleetConfig:
    """
    Load and validate the active configuration.

    Resolution order: ``path`` argument, then the ``FLEET_CONFIG``
    environment variable, then the packaged defaults.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config = load_config(Path(path))

    _logger.info(
        "FLEET_CONFIG_TRACE",
        extra={
            "trace_type": "FLEET_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
            "timezone": config.timezone,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "ControlNumberDef",
    "DEFAULT_CONFIG_PATH",
    "FleetConfig",
    "StoreSettings",
    "get_active_config",
]
