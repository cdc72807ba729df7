"""
Tests for the retention sweeper.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from linkguard.config import SecurityConfig
from linkguard.errors import StoreUnavailable
from linkguard.memory_storage import MemoryRateLimitStorage
from linkguard.models.audit import AuditAction, AuditEvent
from linkguard.models.rate_limit import RateLimitEntry
from linkguard.models.retention import SweepReport
from linkguard.models.token import InvalidReason, InvalidToken
from linkguard.services.audit_log import AuditLog
from linkguard.services.rate_limiter import RateLimiter
from linkguard.services.retention import RetentionSweeper
from linkguard.services.token_ledger import TokenLedger
from linkguard.storage import memory_stores
from linkguard.tests.conftest import T0, new_token

EMAIL = "a@x.com"


@pytest.fixture
def setup(stores, config):
    return (
        RateLimiter(stores.rate_limits, config),
        TokenLedger(stores.tokens, stores.blacklist, config),
        RetentionSweeper(stores, config),
    )


class TestSweep:
    async def test_rate_limit_entries_kept_for_twice_the_window(self, stores, setup):
        limiter, _, sweeper = setup
        await limiter.check_and_record(EMAIL, T0)
        await limiter.check_and_record(EMAIL, T0 + timedelta(minutes=20))

        report = await sweeper.sweep(T0 + timedelta(minutes=30))  # cutoff T0
        assert report.deleted_rate_limit == 0

        report = await sweeper.sweep(T0 + timedelta(minutes=31))
        assert report.deleted_rate_limit == 1
        assert [e.timestamp for e in stores.rate_limits.entries] == [T0 + timedelta(minutes=20)]

    async def test_token_records_deleted_regardless_of_state(self, stores, setup):
        _, ledger, sweeper = setup
        used, fresh, abused = new_token(), new_token(), new_token()
        await ledger.validate(used, EMAIL, "verify", T0)
        await ledger.mark_used(used, EMAIL, T0)
        await ledger.ensure(fresh, EMAIL, "verify", T0)
        for _ in range(4):
            await ledger.validate(abused, EMAIL, "verify", T0)

        report = await sweeper.sweep(T0 + timedelta(hours=1, seconds=1))

        assert report.deleted_token_records == 3
        assert stores.tokens.records == {}
        assert report.deleted_blacklist == 0

    async def test_blacklist_deleted_only_after_expiry(self, stores, setup):
        _, ledger, sweeper = setup
        token_id = new_token()
        await ledger.revoke(token_id, EMAIL, T0)  # expires T0 + 24h

        assert (await sweeper.sweep(T0 + timedelta(hours=24))).deleted_blacklist == 0
        assert (await sweeper.sweep(T0 + timedelta(hours=24, seconds=1))).deleted_blacklist == 1
        assert stores.blacklist.entries == {}

    async def test_audit_events_kept_for_retention_days(self, stores, setup):
        _, _, sweeper = setup
        for days in (0, 89, 91):
            await stores.audit.insert(
                AuditEvent(action=AuditAction.REQUEST_SENT, success=True, timestamp=T0 - timedelta(days=days))
            )

        report = await sweeper.sweep(T0)

        assert report.deleted_audit_events == 1
        assert len(stores.audit.events) == 2

    async def test_second_sweep_deletes_nothing(self, stores, setup):
        limiter, ledger, sweeper = setup
        await limiter.check_and_record(EMAIL, T0)
        for _ in range(4):
            await ledger.validate(new_token(), EMAIL, "verify", T0)
        await ledger.revoke(new_token(), EMAIL, T0)
        await stores.audit.insert(
            AuditEvent(action=AuditAction.CLEANUP, success=True, timestamp=T0 - timedelta(days=100))
        )

        now = T0 + timedelta(days=2)
        first = await sweeper.sweep(now)
        second = await sweeper.sweep(now)

        assert first.total > 0
        assert second == SweepReport()

    async def test_swept_record_does_not_reopen_blacklisted_token(self, stores, setup):
        """Blacklist outlives the token record, so a recreated record is still rejected."""
        _, ledger, sweeper = setup
        token_id = new_token()
        for _ in range(4):
            await ledger.validate(token_id, EMAIL, "magic_link_verify", T0)

        await sweeper.sweep(T0 + timedelta(hours=2))
        assert await stores.tokens.get(token_id) is None

        result = await ledger.validate(token_id, EMAIL, "magic_link_verify", T0 + timedelta(hours=2))
        assert result == InvalidToken(reason=InvalidReason.BLACKLISTED)

    async def test_cleanup_event_audited(self, stores, config):
        audit = AuditLog(stores.audit, config)
        sweeper = RetentionSweeper(stores, config, audit=audit)
        await stores.rate_limits.insert(RateLimitEntry(identity=EMAIL, timestamp=T0 - timedelta(hours=1)))

        await sweeper.sweep(T0)
        await audit.flush()

        [cleanup] = stores.audit.events
        assert cleanup.action == AuditAction.CLEANUP
        assert cleanup.timestamp == T0
        assert cleanup.metadata["deleted_rate_limit"] == 1

    async def test_store_failure_propagates(self, config):
        class BrokenRateLimits(MemoryRateLimitStorage):
            async def delete_before(self, cutoff: datetime) -> int:
                raise StoreUnavailable("rate_limit.delete_before")

        stores = memory_stores()
        stores.rate_limits = BrokenRateLimits()

        with pytest.raises(StoreUnavailable):
            await RetentionSweeper(stores, config).sweep(T0)

    async def test_run_periodically_survives_failures(self, config, caplog):
        class BrokenRateLimits(MemoryRateLimitStorage):
            async def delete_before(self, cutoff: datetime) -> int:
                raise StoreUnavailable("rate_limit.delete_before")

        stores = memory_stores()
        stores.rate_limits = BrokenRateLimits()
        sweeper = RetentionSweeper(stores, config)

        with caplog.at_level(logging.ERROR, logger="linkguard.services.retention"):
            task = asyncio.create_task(sweeper.run_periodically(0.01))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        failures = [r for r in caplog.records if "sweep failed" in r.getMessage()]
        assert len(failures) >= 2


class TestRetentionConfig:
    def test_blacklist_must_outlive_token_records(self):
        with pytest.raises(ValidationError):
            SecurityConfig(blacklist_retention=timedelta(minutes=30), token_cleanup_interval=timedelta(hours=1))

    def test_equal_retention_allowed(self):
        config = SecurityConfig(blacklist_retention=timedelta(hours=1), token_cleanup_interval=timedelta(hours=1))
        assert config.blacklist_retention == config.token_cleanup_interval
