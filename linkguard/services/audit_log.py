"""
Security audit log: fire-and-forget event writes plus read-side queries.

append() is O(1) and never blocks or raises into the caller's operation.
Events go onto a bounded in-memory queue; a background task (run()) drains
it and writes through AuditStorage. Write failures and overflow are reported
on a separate diagnostics logger and nowhere else.

Usage:
    audit = AuditLog(stores.audit, config)
    task = asyncio.create_task(audit.run())
    audit.record(AuditAction.REQUEST_SENT, True, identity="a@x.com")
    ...
    await audit.shutdown(task)   # on shutdown
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from linkguard.config import SecurityConfig
from linkguard.models.audit import ActionBreakdown, AuditAction, AuditEvent, AuditFilter, AuditStats
from linkguard.storage import AuditStorage

logger = logging.getLogger(__name__)
diagnostics = logging.getLogger("linkguard.audit.diagnostics")

_MAX_PAGE_SIZE = 500
# Seconds the dispatcher waits for an event before re-checking whether it should stop
_POLL_INTERVAL_SECONDS = 1.0


class AuditLog:
    """Append-only security event log with a non-blocking write path."""

    def __init__(self, storage: AuditStorage, config: SecurityConfig) -> None:
        self._storage = storage
        self._queue_size = config.audit_queue_size
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(maxsize=config.audit_queue_size)
        self._running = False
        self.dropped = 0
        self.failed = 0

    # -- write path --

    def append(self, event: AuditEvent) -> None:
        """
        Queue an event for writing (non-blocking, never raises).

        If the queue is full, the oldest queued event is dropped to make room.
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                dropped = self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                diagnostics.warning(
                    "audit: queue full (%d), dropped %s event %s", self._queue_size, dropped.action, dropped.id
                )
            except asyncio.QueueEmpty:
                pass
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                diagnostics.warning("audit: failed to enqueue %s event %s", event.action, event.id)
        except Exception:
            diagnostics.exception("audit: unexpected error enqueuing %s event", event.action)

    def record(
        self,
        action: AuditAction,
        success: bool,
        identity: str | None = None,
        error: str | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        timestamp: datetime | None = None,
        **metadata: Any,
    ) -> None:
        """Build an AuditEvent and append it. None-valued metadata is omitted."""
        try:
            event = AuditEvent(
                actor_identity=identity,
                timestamp=timestamp or datetime.now(UTC),
                action=action,
                success=success,
                error_detail=error,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={k: v for k, v in metadata.items() if v is not None},
            )
        except Exception:
            diagnostics.exception("audit: could not build %s event", action)
            return
        self.append(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _write(self, event: AuditEvent) -> None:
        try:
            await self._storage.insert(event)
        except Exception:
            self.failed += 1
            diagnostics.exception("audit: failed to write %s event %s", event.action, event.id)

    async def run(self) -> None:
        """
        Background loop: drain the queue and write events.

        Runs until stop() is called or the task is cancelled.
        """
        self._running = True
        logger.info("audit: dispatcher started")

        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=_POLL_INTERVAL_SECONDS)
            except TimeoutError:
                continue
            try:
                await self._write(event)
            except asyncio.CancelledError:
                # The in-flight event goes back on the queue for flush().
                self.append(event)
                raise
            finally:
                self._queue.task_done()

        logger.info("audit: dispatcher stopped")

    def stop(self) -> None:
        self._running = False

    async def shutdown(self, task: asyncio.Task, timeout: float = 2 * _POLL_INTERVAL_SECONDS) -> int:
        """
        Stop the dispatcher running as task, then write whatever is still queued.

        The dispatcher gets up to timeout seconds to finish its current write
        before it is cancelled.

        Returns:
            Number of events written by the final flush
        """
        self.stop()
        try:
            await asyncio.wait_for(task, timeout)
        except TimeoutError:
            diagnostics.warning("audit: dispatcher did not stop within %.1fs, cancelled", timeout)
        return await self.flush()

    async def flush(self) -> int:
        """Write everything currently queued. Returns the number of events drained."""
        drained = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._write(event)
            self._queue.task_done()
            drained += 1
        return drained

    # -- read path --

    async def query(
        self,
        audit_filter: AuditFilter | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """
        Page through events, newest first.

        Raises:
            ValueError: limit outside 1..500 or negative offset
            StoreUnavailable: the store failed
        """
        if not 1 <= limit <= _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {_MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValueError("offset must be >= 0")
        return await self._storage.query(audit_filter or AuditFilter(), limit, offset)

    async def stats(
        self,
        window: timedelta = timedelta(hours=24),
        action: AuditAction | None = None,
        now: datetime | None = None,
    ) -> AuditStats:
        """Aggregate counts over events in [now - window, now]."""
        now = now or datetime.now(UTC)
        window_start = now - window
        events = await self._storage.scan_since(window_start, action)

        breakdown: dict[str, ActionBreakdown] = {}
        successful = 0
        for event in events:
            entry = breakdown.setdefault(event.action.value, ActionBreakdown())
            entry.total += 1
            if event.success:
                entry.successful += 1
                successful += 1
            else:
                entry.failed += 1

        return AuditStats(
            total_events=len(events),
            successful_events=successful,
            failed_events=len(events) - successful,
            unique_identities=len({e.actor_identity for e in events if e.actor_identity}),
            action_breakdown=breakdown,
            window_ms=int(window / timedelta(milliseconds=1)),
            window_start=window_start,
        )
