"""
linkguard configuration: all environment variables in one place.

Settings are read from the environment once, at import. Components never
read them directly: they receive a SecurityConfig at construction, built
from settings by default and overridden freely in tests.
"""

from __future__ import annotations

import os
from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    return int(raw) if raw else default


class Settings:
    """Application settings from environment variables."""

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
    DATABASE_POOL_MIN: int = _env_int("LINKGUARD_DB_POOL_MIN", 2)
    DATABASE_POOL_MAX: int = _env_int("LINKGUARD_DB_POOL_MAX", 20)
    DATABASE_COMMAND_TIMEOUT: int = _env_int("LINKGUARD_DB_COMMAND_TIMEOUT", 10)  # seconds

    # Rate limiting (magic link requests per identity)
    RATE_LIMIT_REQUESTS: int = _env_int("LINKGUARD_RATE_LIMIT_REQUESTS", 3)
    RATE_LIMIT_WINDOW_MINUTES: int = _env_int("LINKGUARD_RATE_LIMIT_WINDOW_MINUTES", 15)

    # Tokens
    TOKEN_EXPIRY_MINUTES: int = _env_int("LINKGUARD_TOKEN_EXPIRY_MINUTES", 15)
    MAX_TOKEN_ATTEMPTS: int = _env_int("LINKGUARD_MAX_TOKEN_ATTEMPTS", 3)
    TOKEN_CLEANUP_MINUTES: int = _env_int("LINKGUARD_TOKEN_CLEANUP_MINUTES", 60)
    BLACKLIST_RETENTION_HOURS: int = _env_int("LINKGUARD_BLACKLIST_RETENTION_HOURS", 24)

    # Audit
    AUDIT_RETENTION_DAYS: int = _env_int("LINKGUARD_AUDIT_RETENTION_DAYS", 90)
    AUDIT_QUEUE_SIZE: int = _env_int("LINKGUARD_AUDIT_QUEUE_SIZE", 10_000)

    # Background sweep (0 disables the in-process loop)
    SWEEP_INTERVAL_SECONDS: int = _env_int("LINKGUARD_SWEEP_INTERVAL_SECONDS", 60)

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")


# Singleton instance
settings = Settings()


class SecurityConfig(BaseModel):
    """
    Limits, windows and retention periods for every component.

    Passed explicitly into RateLimiter, TokenLedger, AuditLog and
    RetentionSweeper so each deployment (and each test) can tune them
    independently.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate_limit: int = Field(default=3, ge=1)
    rate_limit_window: timedelta = timedelta(minutes=15)

    token_expiry: timedelta = timedelta(minutes=15)
    max_token_attempts: int = Field(default=3, ge=1)
    min_token_length: int = Field(default=32, ge=1)
    expiry_checked_actions: frozenset[str] = frozenset({"verify", "magic_link_verify"})

    token_cleanup_interval: timedelta = timedelta(hours=1)
    blacklist_retention: timedelta = timedelta(hours=24)
    audit_retention_days: int = Field(default=90, ge=1)

    audit_queue_size: int = Field(default=10_000, ge=1)

    @model_validator(mode="after")
    def _check_retention_order(self) -> SecurityConfig:
        # A blacklist entry must outlive the token record it guards, otherwise a
        # swept-then-recreated record could pass validation again.
        if self.blacklist_retention < self.token_cleanup_interval:
            raise ValueError(
                "blacklist_retention must be >= token_cleanup_interval "
                f"({self.blacklist_retention} < {self.token_cleanup_interval})"
            )
        if self.rate_limit_window <= timedelta(0):
            raise ValueError("rate_limit_window must be positive")
        return self

    @property
    def rate_limit_retention(self) -> timedelta:
        """Rate limit entries are kept for twice the window."""
        return self.rate_limit_window * 2

    @property
    def audit_retention(self) -> timedelta:
        return timedelta(days=self.audit_retention_days)

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> SecurityConfig:
        """Build a config from environment-backed settings."""
        s = source or settings
        return cls(
            rate_limit=s.RATE_LIMIT_REQUESTS,
            rate_limit_window=timedelta(minutes=s.RATE_LIMIT_WINDOW_MINUTES),
            token_expiry=timedelta(minutes=s.TOKEN_EXPIRY_MINUTES),
            max_token_attempts=s.MAX_TOKEN_ATTEMPTS,
            token_cleanup_interval=timedelta(minutes=s.TOKEN_CLEANUP_MINUTES),
            blacklist_retention=timedelta(hours=s.BLACKLIST_RETENTION_HOURS),
            audit_retention_days=s.AUDIT_RETENTION_DAYS,
            audit_queue_size=s.AUDIT_QUEUE_SIZE,
        )
