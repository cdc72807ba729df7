"""Repository for token usage records."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from linkguard.db import deleted_count, system_conn
from linkguard.models.token import TokenRecord
from linkguard.storage import TokenStorage


def _row_to_record(row: asyncpg.Record) -> TokenRecord:
    """Convert a database row to a TokenRecord model."""
    return TokenRecord(
        token_id=row["token_id"],
        identity=row["identity"],
        action_kind=row["action_kind"],
        created_at=row["created_at"],
        attempts=row["attempts"],
        last_attempt_at=row["last_attempt_at"],
        used=row["used"],
        used_at=row["used_at"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
    )


class TokenRepo(TokenStorage):
    """All token_records database operations."""

    async def get(self, token_id: str) -> TokenRecord | None:
        async with system_conn("token.get") as conn:
            row = await conn.fetchrow("SELECT * FROM token_records WHERE token_id = $1", token_id)
            return _row_to_record(row) if row else None

    async def insert_if_absent(self, record: TokenRecord) -> TokenRecord:
        """
        Create the usage record on first sight of a token.

        The no-op DO UPDATE makes RETURNING yield the existing row when
        another request created it first.
        """
        async with system_conn("token.insert_if_absent") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO token_records (
                    token_id, identity, action_kind, created_at,
                    attempts, last_attempt_at, used, ip_address, user_agent
                ) VALUES ($1, $2, $3, $4, 0, $4, false, $5, $6)
                ON CONFLICT (token_id) DO UPDATE SET token_id = token_records.token_id
                RETURNING *
                """,
                record.token_id,
                record.identity,
                record.action_kind,
                record.created_at,
                record.ip_address,
                record.user_agent,
            )
            return _row_to_record(row)

    async def increment_attempts(self, token_id: str, max_attempts: int, now: datetime) -> TokenRecord | None:
        """
        Add one attempt in a single conditional UPDATE.

        Two concurrent validations of the same token serialize on the row
        lock, and the loser re-evaluates the WHERE clause, so attempts can
        never pass max_attempts.
        """
        async with system_conn("token.increment_attempts") as conn:
            row = await conn.fetchrow(
                """
                UPDATE token_records
                SET attempts = attempts + 1, last_attempt_at = $3
                WHERE token_id = $1 AND used = false AND attempts < $2
                RETURNING *
                """,
                token_id,
                max_attempts,
                now,
            )
            return _row_to_record(row) if row else None

    async def mark_used(self, token_id: str, now: datetime) -> TokenRecord | None:
        async with system_conn("token.mark_used") as conn:
            row = await conn.fetchrow(
                """
                UPDATE token_records
                SET used = true, used_at = COALESCE(used_at, $2), last_attempt_at = $2
                WHERE token_id = $1
                RETURNING *
                """,
                token_id,
                now,
            )
            return _row_to_record(row) if row else None

    async def list_created_since(self, since: datetime) -> list[TokenRecord]:
        async with system_conn("token.list_created_since") as conn:
            rows = await conn.fetch("SELECT * FROM token_records WHERE created_at >= $1", since)
            return [_row_to_record(row) for row in rows]

    async def delete_created_before(self, cutoff: datetime) -> int:
        async with system_conn("token.delete_created_before") as conn:
            result = await conn.execute("DELETE FROM token_records WHERE created_at < $1", cutoff)
            return deleted_count(result)
