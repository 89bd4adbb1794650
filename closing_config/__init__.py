"""
closing_config -- single public entrypoint for closing engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Other components never read configuration
    files or ``CLOSING_*`` environment variables directly.

Architecture position:
    Configuration -- sits above ``closing_kernel`` and ``closing_services``.
    The kernel MUST NEVER import from ``closing_config``; ``bridges``
    translates an ``EngineConfig`` into kernel and service objects.

Failure modes:
    - ``FileNotFoundError`` -- CLOSING_CONFIG_PATH points to a missing file.
    - ``ConfigError`` -- one or more settings are invalid (all listed).

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``CLOSING_CONFIG_TRACE`` log entry with the settings checksum, so each
    closing run can be tied to the configuration it ran under.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from closing_config.loader import apply_env_overrides, load_yaml_file, parse_engine_config
from closing_config.schema import ConfigError, EngineConfig
from closing_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: ``config_path`` argument, then ``CLOSING_CONFIG_PATH``,
    then the packaged ``defaults.yaml``; ``CLOSING_*`` environment variables
    override individual settings.

    Raises:
        FileNotFoundError: If the chosen file does not exist.
        ConfigError: If any setting is invalid.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("CLOSING_CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    data = apply_env_overrides(load_yaml_file(path), env)
    config = parse_engine_config(data)

    _logger.info(
        "CLOSING_CONFIG_TRACE",
        extra={
            "trace_type": "CLOSING_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "lock_backend": config.lock_backend,
            "fanout_max_workers": config.fanout_max_workers,
            "business_timezone": config.business_timezone,
        },
    )
    return config


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "get_active_config",
]
