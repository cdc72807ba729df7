"""
Tests for the audit log: fire-and-forget writes, queries and stats.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from linkguard.config import SecurityConfig
from linkguard.errors import StoreUnavailable
from linkguard.memory_storage import MemoryAuditStorage
from linkguard.models.audit import AuditAction, AuditEvent, AuditFilter
from linkguard.services.audit_log import AuditLog
from linkguard.tests.conftest import T0


def event(action: AuditAction, success: bool = True, identity: str | None = "a@x.com", minutes: int = 0) -> AuditEvent:
    return AuditEvent(
        actor_identity=identity,
        action=action,
        success=success,
        timestamp=T0 + timedelta(minutes=minutes),
    )


@pytest.fixture
def storage() -> MemoryAuditStorage:
    return MemoryAuditStorage()


@pytest.fixture
def audit(storage) -> AuditLog:
    return AuditLog(storage, SecurityConfig())


class TestAppend:
    """The write path never blocks or fails the caller."""

    async def test_append_is_deferred_until_flush(self, audit, storage):
        audit.append(event(AuditAction.REQUEST_SENT))

        assert storage.events == []
        assert audit.pending == 1

        assert await audit.flush() == 1
        assert len(storage.events) == 1
        assert audit.pending == 0

    async def test_record_builds_event(self, audit, storage):
        audit.record(
            AuditAction.VALIDATE_FAILURE,
            False,
            "a@x.com",
            "expired",
            ip_address="10.0.0.1",
            timestamp=T0,
            token_id="t" * 64,
            request_id=None,
        )
        await audit.flush()

        [stored] = storage.events
        assert stored.action == AuditAction.VALIDATE_FAILURE
        assert stored.success is False
        assert stored.error_detail == "expired"
        assert stored.ip_address == "10.0.0.1"
        assert stored.timestamp == T0
        assert stored.metadata == {"token_id": "t" * 64}

    async def test_write_failure_goes_to_diagnostics(self, caplog):
        class BrokenStorage(MemoryAuditStorage):
            async def insert(self, event: AuditEvent) -> None:
                raise StoreUnavailable("audit.insert")

        audit = AuditLog(BrokenStorage(), SecurityConfig())
        audit.append(event(AuditAction.TOKEN_USED))

        with caplog.at_level(logging.ERROR, logger="linkguard.audit.diagnostics"):
            assert await audit.flush() == 1

        assert audit.failed == 1
        assert any(r.name == "linkguard.audit.diagnostics" for r in caplog.records)

    async def test_full_queue_drops_oldest(self, storage, caplog):
        audit = AuditLog(storage, SecurityConfig(audit_queue_size=2))

        with caplog.at_level(logging.WARNING, logger="linkguard.audit.diagnostics"):
            for minutes in range(3):
                audit.append(event(AuditAction.REQUEST_SENT, minutes=minutes))

        assert audit.dropped == 1
        await audit.flush()
        assert [e.timestamp for e in storage.events] == [T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)]
        assert "queue full" in caplog.text

    async def test_dispatcher_writes_in_background(self, audit, storage):
        task = asyncio.create_task(audit.run())
        audit.append(event(AuditAction.REQUEST_SENT))
        audit.append(event(AuditAction.RATE_LIMITED, success=False))

        for _ in range(100):
            if len(storage.events) == 2:
                break
            await asyncio.sleep(0.01)

        audit.stop()
        await asyncio.wait_for(task, timeout=3)

        assert [e.action for e in storage.events] == [AuditAction.REQUEST_SENT, AuditAction.RATE_LIMITED]

    async def test_dispatcher_survives_write_failure(self):
        class FlakyStorage(MemoryAuditStorage):
            def __init__(self) -> None:
                super().__init__()
                self.calls = 0

            async def insert(self, event: AuditEvent) -> None:
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("boom")
                await super().insert(event)

        storage = FlakyStorage()
        audit = AuditLog(storage, SecurityConfig())
        task = asyncio.create_task(audit.run())
        audit.append(event(AuditAction.REQUEST_SENT))
        audit.append(event(AuditAction.TOKEN_USED))

        for _ in range(100):
            if storage.events:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [e.action for e in storage.events] == [AuditAction.TOKEN_USED]
        assert audit.failed == 1


class SlowStorage(MemoryAuditStorage):
    """Each insert takes 50ms, so a write can be caught in flight."""

    async def insert(self, event: AuditEvent) -> None:
        await asyncio.sleep(0.05)
        await super().insert(event)


class TestShutdown:
    """Events already dequeued by the dispatcher survive shutdown."""

    async def test_shutdown_waits_for_in_flight_write(self):
        storage = SlowStorage()
        audit = AuditLog(storage, SecurityConfig())
        task = asyncio.create_task(audit.run())
        audit.append(event(AuditAction.TOKEN_USED))
        await asyncio.sleep(0.01)  # dispatcher is now inside insert()

        assert await audit.shutdown(task) == 0

        assert [e.action for e in storage.events] == [AuditAction.TOKEN_USED]
        assert task.done()

    async def test_cancelled_write_is_requeued(self):
        storage = SlowStorage()
        audit = AuditLog(storage, SecurityConfig())
        task = asyncio.create_task(audit.run())
        audit.append(event(AuditAction.TOKEN_USED))
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert storage.events == []
        assert audit.pending == 1
        assert await audit.flush() == 1
        assert [e.action for e in storage.events] == [AuditAction.TOKEN_USED]

    async def test_shutdown_timeout_still_flushes(self):
        storage = SlowStorage()
        audit = AuditLog(storage, SecurityConfig())
        task = asyncio.create_task(audit.run())
        audit.append(event(AuditAction.REQUEST_SENT))
        audit.append(event(AuditAction.TOKEN_USED))
        await asyncio.sleep(0.01)

        drained = await audit.shutdown(task, timeout=0.01)

        assert drained == 2
        assert sorted(e.action for e in storage.events) == [AuditAction.REQUEST_SENT, AuditAction.TOKEN_USED]


class TestQuery:
    """Filtered, paged reads, newest first."""

    async def _seed(self, audit: AuditLog) -> None:
        audit.append(event(AuditAction.REQUEST_SENT, minutes=0))
        audit.append(event(AuditAction.VALIDATE_SUCCESS, minutes=1))
        audit.append(event(AuditAction.TOKEN_USED, minutes=2))
        audit.append(event(AuditAction.REQUEST_SENT, identity="b@x.com", minutes=3))
        await audit.flush()

    async def test_newest_first(self, audit):
        await self._seed(audit)

        events = await audit.query()

        assert [e.timestamp for e in events] == [T0 + timedelta(minutes=m) for m in (3, 2, 1, 0)]

    async def test_by_identity(self, audit):
        await self._seed(audit)

        events = await audit.query(AuditFilter(identity="a@x.com"))

        assert [e.action for e in events] == [
            AuditAction.TOKEN_USED,
            AuditAction.VALIDATE_SUCCESS,
            AuditAction.REQUEST_SENT,
        ]

    async def test_by_action(self, audit):
        await self._seed(audit)

        events = await audit.query(AuditFilter(action=AuditAction.REQUEST_SENT))

        assert [e.actor_identity for e in events] == ["b@x.com", "a@x.com"]

    async def test_by_window(self, audit):
        await self._seed(audit)

        events = await audit.query(
            AuditFilter(since=T0 + timedelta(minutes=1), until=T0 + timedelta(minutes=2))
        )

        assert [e.action for e in events] == [AuditAction.TOKEN_USED, AuditAction.VALIDATE_SUCCESS]

    async def test_limit_and_offset(self, audit):
        await self._seed(audit)

        page = await audit.query(limit=2, offset=1)

        assert [e.timestamp for e in page] == [T0 + timedelta(minutes=2), T0 + timedelta(minutes=1)]

    @pytest.mark.parametrize("limit,offset", [(0, 0), (501, 0), (10, -1)])
    async def test_bad_paging(self, audit, limit, offset):
        with pytest.raises(ValueError):
            await audit.query(limit=limit, offset=offset)


class TestStats:
    async def test_counts_and_breakdown(self, audit):
        audit.append(event(AuditAction.REQUEST_SENT, minutes=1))
        audit.append(event(AuditAction.RATE_LIMITED, success=False, minutes=2))
        audit.append(event(AuditAction.VALIDATE_SUCCESS, identity="b@x.com", minutes=3))
        audit.append(event(AuditAction.VALIDATE_FAILURE, success=False, identity=None, minutes=4))
        audit.append(event(AuditAction.REQUEST_SENT, minutes=-120))  # outside the window
        await audit.flush()

        stats = await audit.stats(timedelta(hours=1), now=T0 + timedelta(minutes=5))

        assert stats.total_events == 4
        assert stats.successful_events == 2
        assert stats.failed_events == 2
        assert stats.unique_identities == 2
        assert stats.action_breakdown["rate_limited"].failed == 1
        assert stats.action_breakdown["request_sent"].total == 1
        assert stats.window_ms == 3600 * 1000
        assert stats.window_start == T0 + timedelta(minutes=5) - timedelta(hours=1)

    async def test_action_filter(self, audit):
        audit.append(event(AuditAction.REQUEST_SENT, minutes=1))
        audit.append(event(AuditAction.REQUEST_SENT, identity="b@x.com", minutes=2))
        audit.append(event(AuditAction.TOKEN_USED, minutes=3))
        await audit.flush()

        stats = await audit.stats(timedelta(hours=1), AuditAction.REQUEST_SENT, now=T0 + timedelta(minutes=5))

        assert stats.total_events == 2
        assert list(stats.action_breakdown) == ["request_sent"]
        assert stats.action_breakdown["request_sent"].successful == 2

    async def test_empty_window(self, audit):
        stats = await audit.stats(timedelta(hours=1), now=T0)

        assert stats.total_events == 0
        assert stats.unique_identities == 0
        assert stats.action_breakdown == {}
