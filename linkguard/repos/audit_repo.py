"""Repository for security audit event persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg

from linkguard.db import deleted_count, system_conn
from linkguard.models.audit import AuditAction, AuditEvent, AuditFilter
from linkguard.storage import AuditStorage


def _row_to_event(row: asyncpg.Record) -> AuditEvent:
    """Convert a database row to an AuditEvent model."""
    return AuditEvent(
        id=row["id"],
        actor_identity=row["actor_identity"],
        action=row["action"],
        success=row["success"],
        timestamp=row["ts"],
        error_detail=row["error_detail"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        metadata=row["metadata"] or {},
    )


def _where(audit_filter: AuditFilter) -> tuple[str, list[Any]]:
    """Build a WHERE clause and its positional args from a filter."""
    clauses: list[str] = []
    args: list[Any] = []
    if audit_filter.identity is not None:
        args.append(audit_filter.identity)
        clauses.append(f"actor_identity = ${len(args)}")
    if audit_filter.action is not None:
        args.append(audit_filter.action.value)
        clauses.append(f"action = ${len(args)}")
    if audit_filter.since is not None:
        args.append(audit_filter.since)
        clauses.append(f"ts >= ${len(args)}")
    if audit_filter.until is not None:
        args.append(audit_filter.until)
        clauses.append(f"ts <= ${len(args)}")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, args


class AuditRepo(AuditStorage):
    """All security_audit_log database operations."""

    async def insert(self, event: AuditEvent) -> None:
        async with system_conn("audit.insert") as conn:
            await conn.execute(
                """
                INSERT INTO security_audit_log (
                    id, actor_identity, action, success, ts,
                    error_detail, ip_address, user_agent, metadata
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                event.id,
                event.actor_identity,
                event.action.value,
                event.success,
                event.timestamp,
                event.error_detail,
                event.ip_address,
                event.user_agent,
                event.metadata,
            )

    async def query(self, audit_filter: AuditFilter, limit: int, offset: int) -> list[AuditEvent]:
        where, args = _where(audit_filter)
        args.extend([limit, offset])
        async with system_conn("audit.query") as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM security_audit_log
                {where}
                ORDER BY ts DESC
                LIMIT ${len(args) - 1} OFFSET ${len(args)}
                """,
                *args,
            )
            return [_row_to_event(row) for row in rows]

    async def scan_since(self, since: datetime, action: AuditAction | None = None) -> list[AuditEvent]:
        async with system_conn("audit.scan_since") as conn:
            if action is None:
                rows = await conn.fetch("SELECT * FROM security_audit_log WHERE ts >= $1", since)
            else:
                rows = await conn.fetch(
                    "SELECT * FROM security_audit_log WHERE action = $1 AND ts >= $2",
                    action.value,
                    since,
                )
            return [_row_to_event(row) for row in rows]

    async def delete_before(self, cutoff: datetime) -> int:
        async with system_conn("audit.delete_before") as conn:
            result = await conn.execute("DELETE FROM security_audit_log WHERE ts < $1", cutoff)
            return deleted_count(result)
