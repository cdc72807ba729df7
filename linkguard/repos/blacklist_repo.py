"""Repository for the token blacklist."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from linkguard.db import deleted_count, system_conn
from linkguard.models.token import BlacklistEntry
from linkguard.storage import BlacklistStorage


def _row_to_entry(row: asyncpg.Record) -> BlacklistEntry:
    """Convert a database row to a BlacklistEntry model."""
    return BlacklistEntry(
        token_id=row["token_id"],
        identity=row["identity"],
        reason=row["reason"],
        blacklisted_at=row["blacklisted_at"],
        expires_at=row["expires_at"],
        metadata=row["metadata"] or {},
    )


class BlacklistRepo(BlacklistStorage):
    """All token_blacklist database operations."""

    async def get(self, token_id: str) -> BlacklistEntry | None:
        async with system_conn("blacklist.get") as conn:
            row = await conn.fetchrow("SELECT * FROM token_blacklist WHERE token_id = $1", token_id)
            return _row_to_entry(row) if row else None

    async def insert_if_absent(self, entry: BlacklistEntry) -> bool:
        """
        Blacklist a token exactly once.

        Returns:
            True if this call created the entry, False if it already existed
        """
        async with system_conn("blacklist.insert_if_absent") as conn:
            result = await conn.execute(
                """
                INSERT INTO token_blacklist (token_id, identity, reason, blacklisted_at, expires_at, metadata)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (token_id) DO NOTHING
                """,
                entry.token_id,
                entry.identity,
                entry.reason.value,
                entry.blacklisted_at,
                entry.expires_at,
                entry.metadata,
            )
            return result == "INSERT 0 1"

    async def count_active(self, now: datetime) -> int:
        async with system_conn("blacklist.count_active") as conn:
            count = await conn.fetchval("SELECT count(*) FROM token_blacklist WHERE expires_at >= $1", now)
            return count or 0

    async def delete_expired(self, now: datetime) -> int:
        async with system_conn("blacklist.delete_expired") as conn:
            result = await conn.execute("DELETE FROM token_blacklist WHERE expires_at < $1", now)
            return deleted_count(result)
