"""Repository for rate limit entry persistence."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from linkguard.db import deleted_count, system_conn
from linkguard.models.rate_limit import RateLimitEntry
from linkguard.storage import RateLimitStorage


def _row_to_entry(row: asyncpg.Record) -> RateLimitEntry:
    """Convert a database row to a RateLimitEntry model."""
    return RateLimitEntry(
        identity=row["identity"],
        timestamp=row["ts"],
        request_kind=row["request_kind"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        request_id=row["request_id"],
    )


class RateLimitRepo(RateLimitStorage):
    """All rate_limit_entries database operations."""

    async def list_since(self, identity: str, since: datetime) -> list[RateLimitEntry]:
        """
        Entries for one identity inside the window.

        Args:
            identity: Normalized identity (email)
            since: Inclusive lower bound on ts

        Returns:
            Entries ordered oldest first
        """
        async with system_conn("rate_limit.list_since") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM rate_limit_entries
                WHERE identity = $1 AND ts >= $2
                ORDER BY ts
                """,
                identity,
                since,
            )
            return [_row_to_entry(row) for row in rows]

    async def list_all_since(self, since: datetime) -> list[RateLimitEntry]:
        async with system_conn("rate_limit.list_all_since") as conn:
            rows = await conn.fetch(
                "SELECT * FROM rate_limit_entries WHERE ts >= $1 ORDER BY ts",
                since,
            )
            return [_row_to_entry(row) for row in rows]

    async def insert(self, entry: RateLimitEntry) -> None:
        async with system_conn("rate_limit.insert") as conn:
            await conn.execute(
                """
                INSERT INTO rate_limit_entries (identity, ts, request_kind, ip_address, user_agent, request_id)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                entry.identity,
                entry.timestamp,
                entry.request_kind,
                entry.ip_address,
                entry.user_agent,
                entry.request_id,
            )

    async def delete_before(self, cutoff: datetime) -> int:
        async with system_conn("rate_limit.delete_before") as conn:
            result = await conn.execute("DELETE FROM rate_limit_entries WHERE ts < $1", cutoff)
            return deleted_count(result)
