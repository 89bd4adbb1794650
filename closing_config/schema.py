"""
Configuration Schema (``closing_config.schema``).

Responsibility
--------------
Frozen dataclass describing every runtime setting of the closing engine,
and the validation that turns a bad setting into a ``ConfigError`` listing
every problem at once.

Architecture position
---------------------
**Config layer**.  No dependency on the kernel; ``closing_config.bridges``
turns an ``EngineConfig`` into kernel objects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOCK_BACKENDS = ("memory", "advisory")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Configuration failed validation.  ``errors`` lists every problem."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings of the closing engine."""

    database_url: str = "sqlite:///closing.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    lock_backend: str = "memory"
    lock_timeout_seconds: float = 30.0
    fanout_max_workers: int = 1
    fanout_timeout_seconds: float | None = None
    business_timezone: str = "UTC"
    log_level: str = "INFO"
    checksum: str = ""

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    def validate(self) -> list[str]:
        """Return every problem found; empty when valid."""
        errors: list[str] = []

        if not self.database_url:
            errors.append("database.url must not be empty")
        if self.pool_size < 1:
            errors.append(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            errors.append(f"database.max_overflow must be >= 0, got {self.max_overflow}")
        if self.pool_timeout <= 0:
            errors.append(f"database.pool_timeout must be > 0, got {self.pool_timeout}")

        if self.lock_backend not in LOCK_BACKENDS:
            errors.append(
                f"locking.backend must be one of {', '.join(LOCK_BACKENDS)}, "
                f"got {self.lock_backend!r}"
            )
        elif self.lock_backend == "advisory" and not self.is_postgres:
            errors.append("locking.backend 'advisory' requires a PostgreSQL database.url")
        if self.lock_timeout_seconds < 0:
            errors.append(
                f"locking.timeout_seconds must be >= 0, got {self.lock_timeout_seconds}"
            )

        if self.fanout_max_workers < 1:
            errors.append(
                f"fanout.max_workers must be >= 1, got {self.fanout_max_workers}"
            )
        if self.fanout_timeout_seconds is not None and self.fanout_timeout_seconds <= 0:
            errors.append(
                f"fanout.timeout_seconds must be > 0 or null, got {self.fanout_timeout_seconds}"
            )

        try:
            ZoneInfo(self.business_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"business_timezone {self.business_timezone!r} is not a known zone")

        if self.log_level not in LOG_LEVELS:
            errors.append(
                f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )

        return errors
