"""Configuration management for the schedule resolver."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache

from dotenv import load_dotenv

from schedule_resolver.timeline.clock import parse_offset
from schedule_resolver.timeline.types import DEFAULT_STATUSES

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str = "sqlite+aiosqlite:///./schedule_resolver.db"
    local_utc_offset: str = "+09:00"
    store_timeout_seconds: float = 5.0
    resolve_concurrency: int = 8
    status_codes: tuple[str, ...] = field(default=DEFAULT_STATUSES)
    default_pending_type: str = "monthly-planner"
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration."""
        parse_offset(self.local_utc_offset)
        if self.store_timeout_seconds <= 0:
            raise ValueError("store_timeout_seconds must be positive")
        if self.resolve_concurrency < 1:
            raise ValueError("resolve_concurrency must be at least 1")
        if not self.status_codes:
            raise ValueError("status_codes must not be empty")
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ValueError(f"Unknown log level '{self.log_level}'")

    @property
    def utc_offset(self) -> timedelta:
        return parse_offset(self.local_utc_offset)

    @property
    def HOST(self) -> str:
        """Alias for host."""
        return self.host

    @property
    def PORT(self) -> int:
        """Alias for port."""
        return self.port

    @property
    def DEBUG(self) -> bool:
        """Alias for debug."""
        return self.debug

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        statuses = os.getenv("STATUS_CODES")
        return cls(
            database_url=os.getenv(
                "DATABASE_URL",
                "sqlite+aiosqlite:///./schedule_resolver.db",
            ),
            local_utc_offset=os.getenv("LOCAL_UTC_OFFSET", "+09:00"),
            store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "5")),
            resolve_concurrency=int(os.getenv("RESOLVE_CONCURRENCY", "8")),
            status_codes=(
                tuple(s.strip().lower() for s in statuses.split(",") if s.strip())
                if statuses
                else DEFAULT_STATUSES
            ),
            default_pending_type=os.getenv("DEFAULT_PENDING_TYPE", "monthly-planner"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the CLI and API entrypoints."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
