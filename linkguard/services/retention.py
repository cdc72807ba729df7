"""
Retention sweeper: bounded-retention cleanup across the four security tables.

Each deletion is a single-table range delete, so a sweep can run alongside
live traffic without any cross-table lock, and running it twice deletes
nothing the second time.

    rate_limit_entries   ts < now - 2 * rate_limit_window
    token_records        created_at < now - token_cleanup_interval (any state)
    token_blacklist      expires_at < now
    security_audit_log   ts < now - audit_retention_days
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from linkguard.config import SecurityConfig
from linkguard.models.audit import AuditAction
from linkguard.models.retention import SweepReport
from linkguard.services.audit_log import AuditLog
from linkguard.storage import SecurityStores

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes rows past their retention window."""

    def __init__(self, stores: SecurityStores, config: SecurityConfig, audit: AuditLog | None = None) -> None:
        self._stores = stores
        self._config = config
        self._audit = audit

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """
        Run one cleanup pass.

        Raises:
            StoreUnavailable: a table could not be swept; earlier tables in
                the pass keep their deletions
        """
        now = now or datetime.now(UTC)
        config = self._config

        report = SweepReport(
            deleted_rate_limit=await self._stores.rate_limits.delete_before(now - config.rate_limit_retention),
            deleted_token_records=await self._stores.tokens.delete_created_before(
                now - config.token_cleanup_interval
            ),
            deleted_blacklist=await self._stores.blacklist.delete_expired(now),
            deleted_audit_events=await self._stores.audit.delete_before(now - config.audit_retention),
        )

        if report.total:
            logger.info(
                "retention: deleted %d rate limit, %d token, %d blacklist, %d audit rows",
                report.deleted_rate_limit,
                report.deleted_token_records,
                report.deleted_blacklist,
                report.deleted_audit_events,
            )
        if self._audit is not None:
            self._audit.record(AuditAction.CLEANUP, True, timestamp=now, **report.model_dump())
        return report

    async def run_periodically(self, interval_seconds: float) -> None:
        """
        Sweep every interval_seconds until cancelled.

        A failed sweep is logged and retried on the next tick.
        """
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("retention: sweep failed")
            await asyncio.sleep(interval_seconds)
