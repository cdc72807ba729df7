"""
Storage protocol for the four security tables.

One abstract class per logical table. Implement with Postgres for production
(linkguard.repos), or in-memory for tests (linkguard.memory_storage).

Every method either completes or raises StoreUnavailable. Methods that must
be atomic relative to a single row say so; nothing here spans tables.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from linkguard.models.audit import AuditAction, AuditEvent, AuditFilter
from linkguard.models.rate_limit import RateLimitEntry
from linkguard.models.token import BlacklistEntry, TokenRecord


class RateLimitStorage:
    """rate_limit_entries: indexed on (identity, timestamp) and timestamp."""

    async def list_since(self, identity: str, since: datetime) -> list[RateLimitEntry]:
        """Entries for identity with timestamp >= since, oldest first."""
        raise NotImplementedError

    async def list_all_since(self, since: datetime) -> list[RateLimitEntry]:
        """Entries for every identity with timestamp >= since."""
        raise NotImplementedError

    async def insert(self, entry: RateLimitEntry) -> None:
        raise NotImplementedError

    async def delete_before(self, cutoff: datetime) -> int:
        """Delete entries with timestamp < cutoff. Returns rows deleted."""
        raise NotImplementedError


class TokenStorage:
    """token_records: unique on token_id, indexed on (identity, created_at) and created_at."""

    async def get(self, token_id: str) -> TokenRecord | None:
        raise NotImplementedError

    async def insert_if_absent(self, record: TokenRecord) -> TokenRecord:
        """Insert record unless token_id exists. Returns whichever row is stored."""
        raise NotImplementedError

    async def increment_attempts(self, token_id: str, max_attempts: int, now: datetime) -> TokenRecord | None:
        """
        Atomically add one attempt, but only while used is false and
        attempts < max_attempts. Returns the updated row, or None when the
        condition did not hold (or the row is gone).
        """
        raise NotImplementedError

    async def mark_used(self, token_id: str, now: datetime) -> TokenRecord | None:
        """Set used=true. used_at keeps its first value. None if token_id is unknown."""
        raise NotImplementedError

    async def list_created_since(self, since: datetime) -> list[TokenRecord]:
        raise NotImplementedError

    async def delete_created_before(self, cutoff: datetime) -> int:
        raise NotImplementedError


class BlacklistStorage:
    """token_blacklist: unique on token_id, indexed on expires_at."""

    async def get(self, token_id: str) -> BlacklistEntry | None:
        raise NotImplementedError

    async def insert_if_absent(self, entry: BlacklistEntry) -> bool:
        """Insert unless token_id is already blacklisted. True if this call inserted."""
        raise NotImplementedError

    async def count_active(self, now: datetime) -> int:
        """Entries with expires_at >= now."""
        raise NotImplementedError

    async def delete_expired(self, now: datetime) -> int:
        """Delete entries with expires_at < now."""
        raise NotImplementedError


class AuditStorage:
    """security_audit_log: indexed on (actor_identity, timestamp), (action, timestamp) and timestamp."""

    async def insert(self, event: AuditEvent) -> None:
        raise NotImplementedError

    async def query(self, audit_filter: AuditFilter, limit: int, offset: int) -> list[AuditEvent]:
        """Matching events, newest first."""
        raise NotImplementedError

    async def scan_since(self, since: datetime, action: AuditAction | None = None) -> list[AuditEvent]:
        """Events with timestamp >= since, optionally for one action."""
        raise NotImplementedError

    async def delete_before(self, cutoff: datetime) -> int:
        raise NotImplementedError


@dataclass
class SecurityStores:
    """The four tables, wired together for the services."""

    rate_limits: RateLimitStorage
    tokens: TokenStorage
    blacklist: BlacklistStorage
    audit: AuditStorage


def memory_stores() -> SecurityStores:
    """Fresh in-memory tables."""
    from linkguard.memory_storage import (
        MemoryAuditStorage,
        MemoryBlacklistStorage,
        MemoryRateLimitStorage,
        MemoryTokenStorage,
    )

    return SecurityStores(
        rate_limits=MemoryRateLimitStorage(),
        tokens=MemoryTokenStorage(),
        blacklist=MemoryBlacklistStorage(),
        audit=MemoryAuditStorage(),
    )


def postgres_stores() -> SecurityStores:
    """Postgres-backed tables. Requires linkguard.db.init_pool() first."""
    from linkguard.repos import AuditRepo, BlacklistRepo, RateLimitRepo, TokenRepo

    return SecurityStores(
        rate_limits=RateLimitRepo(),
        tokens=TokenRepo(),
        blacklist=BlacklistRepo(),
        audit=AuditRepo(),
    )
