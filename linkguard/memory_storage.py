"""
In-memory implementations of the storage protocol.

Used by the test suite and by single-process deployments that do not need
durability. A lock per table makes each method atomic, which is the same
per-row guarantee the Postgres repos get from single statements.
"""

from __future__ import annotations

import threading
from datetime import datetime

from linkguard.models.audit import AuditAction, AuditEvent, AuditFilter
from linkguard.models.rate_limit import RateLimitEntry
from linkguard.models.token import BlacklistEntry, TokenRecord
from linkguard.storage import AuditStorage, BlacklistStorage, RateLimitStorage, TokenStorage


class MemoryRateLimitStorage(RateLimitStorage):
    def __init__(self) -> None:
        self.entries: list[RateLimitEntry] = []
        self._lock = threading.Lock()

    async def list_since(self, identity: str, since: datetime) -> list[RateLimitEntry]:
        with self._lock:
            rows = [e for e in self.entries if e.identity == identity and e.timestamp >= since]
        return sorted(rows, key=lambda e: e.timestamp)

    async def list_all_since(self, since: datetime) -> list[RateLimitEntry]:
        with self._lock:
            rows = [e for e in self.entries if e.timestamp >= since]
        return sorted(rows, key=lambda e: e.timestamp)

    async def insert(self, entry: RateLimitEntry) -> None:
        with self._lock:
            self.entries.append(entry)

    async def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self.entries)
            self.entries = [e for e in self.entries if e.timestamp >= cutoff]
            return before - len(self.entries)


class MemoryTokenStorage(TokenStorage):
    def __init__(self) -> None:
        self.records: dict[str, TokenRecord] = {}
        self._lock = threading.Lock()

    async def get(self, token_id: str) -> TokenRecord | None:
        with self._lock:
            record = self.records.get(token_id)
            return record.model_copy() if record else None

    async def insert_if_absent(self, record: TokenRecord) -> TokenRecord:
        with self._lock:
            stored = self.records.setdefault(record.token_id, record.model_copy())
            return stored.model_copy()

    async def increment_attempts(self, token_id: str, max_attempts: int, now: datetime) -> TokenRecord | None:
        with self._lock:
            record = self.records.get(token_id)
            if record is None or record.used or record.attempts >= max_attempts:
                return None
            updated = record.model_copy(update={"attempts": record.attempts + 1, "last_attempt_at": now})
            self.records[token_id] = updated
            return updated.model_copy()

    async def mark_used(self, token_id: str, now: datetime) -> TokenRecord | None:
        with self._lock:
            record = self.records.get(token_id)
            if record is None:
                return None
            updated = record.model_copy(
                update={"used": True, "used_at": record.used_at or now, "last_attempt_at": now}
            )
            self.records[token_id] = updated
            return updated.model_copy()

    async def list_created_since(self, since: datetime) -> list[TokenRecord]:
        with self._lock:
            return [r.model_copy() for r in self.records.values() if r.created_at >= since]

    async def delete_created_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [token_id for token_id, r in self.records.items() if r.created_at < cutoff]
            for token_id in stale:
                del self.records[token_id]
            return len(stale)


class MemoryBlacklistStorage(BlacklistStorage):
    def __init__(self) -> None:
        self.entries: dict[str, BlacklistEntry] = {}
        self._lock = threading.Lock()

    async def get(self, token_id: str) -> BlacklistEntry | None:
        with self._lock:
            return self.entries.get(token_id)

    async def insert_if_absent(self, entry: BlacklistEntry) -> bool:
        with self._lock:
            if entry.token_id in self.entries:
                return False
            self.entries[entry.token_id] = entry
            return True

    async def count_active(self, now: datetime) -> int:
        with self._lock:
            return sum(1 for e in self.entries.values() if e.expires_at >= now)

    async def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [token_id for token_id, e in self.entries.items() if e.expires_at < now]
            for token_id in expired:
                del self.entries[token_id]
            return len(expired)


class MemoryAuditStorage(AuditStorage):
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []
        self._lock = threading.Lock()

    async def insert(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    async def query(self, audit_filter: AuditFilter, limit: int, offset: int) -> list[AuditEvent]:
        with self._lock:
            rows = [e for e in self.events if audit_filter.matches(e)]
        rows.sort(key=lambda e: e.timestamp, reverse=True)
        return rows[offset : offset + limit]

    async def scan_since(self, since: datetime, action: AuditAction | None = None) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self.events if e.timestamp >= since and (action is None or e.action == action)]

    async def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self.events)
            self.events = [e for e in self.events if e.timestamp >= cutoff]
            return before - len(self.events)
