"""
Configuration Loader (``closing_config.loader``).

Responsibility
--------------
Reads the YAML configuration file, applies ``CLOSING_*`` environment
overrides, and parses the result into an ``EngineConfig``.  Runtime code
goes through ``closing_config.get_active_config()`` instead of calling
this module.

Invariants enforced
-------------------
* Environment variables win over the file; the file wins over defaults.
* Every parse problem is collected and raised together as ``ConfigError``.
* ``compute_checksum`` is deterministic for identical effective settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong types or invalid values  -> ``ConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from closing_config.schema import ConfigError, EngineConfig

# (environment variable, section, key)
ENV_OVERRIDES: tuple[tuple[str, str | None, str], ...] = (
    ("CLOSING_DATABASE_URL", "database", "url"),
    ("CLOSING_DB_ECHO", "database", "echo"),
    ("CLOSING_DB_POOL_SIZE", "database", "pool_size"),
    ("CLOSING_LOCK_BACKEND", "locking", "backend"),
    ("CLOSING_LOCK_TIMEOUT_SECONDS", "locking", "timeout_seconds"),
    ("CLOSING_FANOUT_MAX_WORKERS", "fanout", "max_workers"),
    ("CLOSING_FANOUT_TIMEOUT_SECONDS", "fanout", "timeout_seconds"),
    ("CLOSING_BUSINESS_TIMEZONE", None, "business_timezone"),
    ("CLOSING_LOG_LEVEL", "logging", "level"),
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str]
) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}

    # DATABASE_URL is honoured for compatibility with hosting platforms
    if "DATABASE_URL" in environ and "CLOSING_DATABASE_URL" not in environ:
        merged.setdefault("database", {})["url"] = environ["DATABASE_URL"]

    for env_name, section, key in ENV_OVERRIDES:
        if env_name not in environ:
            continue
        value: Any = yaml.safe_load(environ[env_name])
        if env_name == "CLOSING_DATABASE_URL":
            value = environ[env_name]
        if section is None:
            merged[key] = value
        else:
            merged.setdefault(section, {})[key] = value
    return merged


def _typed(
    errors: list[str],
    section: Mapping[str, Any],
    name: str,
    key: str,
    kind: type,
    default: Any,
    nullable: bool = False,
) -> Any:
    value = section.get(key, default)
    if value is None:
        if nullable:
            return None
        errors.append(f"{name}.{key} must not be null")
        return default
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if kind is int and isinstance(value, bool):
        errors.append(f"{name}.{key} must be an integer, got {value!r}")
        return default
    if not isinstance(value, kind):
        errors.append(f"{name}.{key} must be {kind.__name__}, got {value!r}")
        return default
    return value


def parse_engine_config(data: Mapping[str, Any]) -> EngineConfig:
    """
    Parse a (merged) configuration mapping into a validated EngineConfig.

    Raises:
        ConfigError: listing every type and value problem found.
    """
    errors: list[str] = []
    defaults = EngineConfig()

    database = data.get("database") or {}
    locking = data.get("locking") or {}
    fanout = data.get("fanout") or {}
    logging_section = data.get("logging") or {}

    fields = dict(
        database_url=_typed(errors, database, "database", "url", str, defaults.database_url),
        echo=_typed(errors, database, "database", "echo", bool, defaults.echo),
        pool_size=_typed(errors, database, "database", "pool_size", int, defaults.pool_size),
        max_overflow=_typed(
            errors, database, "database", "max_overflow", int, defaults.max_overflow
        ),
        pool_timeout=_typed(
            errors, database, "database", "pool_timeout", int, defaults.pool_timeout
        ),
        lock_backend=_typed(errors, locking, "locking", "backend", str, defaults.lock_backend),
        lock_timeout_seconds=_typed(
            errors, locking, "locking", "timeout_seconds", float, defaults.lock_timeout_seconds
        ),
        fanout_max_workers=_typed(
            errors, fanout, "fanout", "max_workers", int, defaults.fanout_max_workers
        ),
        fanout_timeout_seconds=_typed(
            errors, fanout, "fanout", "timeout_seconds", float, None, nullable=True
        ),
        business_timezone=_typed(
            errors, data, "root", "business_timezone", str, defaults.business_timezone
        ),
        log_level=str(
            _typed(errors, logging_section, "logging", "level", str, defaults.log_level)
        ).upper(),
    )

    config = EngineConfig(**fields, checksum=compute_checksum(fields))
    errors.extend(config.validate())
    if errors:
        raise ConfigError(errors)
    return config


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of the effective settings."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
