"""
Sliding-window rate limiting for magic link requests.

One row per accepted request lives in rate_limit_entries. A request is
admitted when fewer than `limit` rows for the identity fall inside
[now - window, now]; the lower edge is inclusive.

check_and_record reads then writes, with no transaction spanning both. Two
requests racing at the boundary can both see count == limit - 1 and both be
admitted, so an identity may get one extra request per contention window.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime, timedelta

from linkguard.config import SecurityConfig
from linkguard.models.rate_limit import (
    MAGIC_LINK_REQUEST,
    IdentityCount,
    RateLimitDecision,
    RateLimitEntry,
    RateLimitStats,
    RateLimitStatus,
    normalize_identity,
)
from linkguard.storage import RateLimitStorage

logger = logging.getLogger(__name__)

_TOP_IDENTITIES = 10


def _ms(delta: timedelta) -> int:
    return int(delta / timedelta(milliseconds=1))


class RateLimiter:
    """Enforces a per-identity request quota over a sliding window."""

    def __init__(self, storage: RateLimitStorage, config: SecurityConfig) -> None:
        self._storage = storage
        self.limit = config.rate_limit
        self.window = config.rate_limit_window

    def _retry_after_ms(self, oldest: datetime, now: datetime) -> int:
        # A row exactly `window` old still counts, so the earliest admissible
        # instant is at least 1 ms away.
        return max(1, _ms(oldest + self.window - now))

    async def check_and_record(
        self,
        identity: str,
        now: datetime | None = None,
        *,
        request_kind: str = MAGIC_LINK_REQUEST,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RateLimitDecision:
        """
        Admit and record one request for identity, or deny it.

        Args:
            identity: Identity being throttled (email address)
            now: Evaluation instant, defaults to the current UTC time
            request_kind: Label stored with the entry
            ip_address: Origin address, stored for monitoring
            user_agent: Client descriptor, stored for monitoring

        Returns:
            RateLimitDecision. Denied requests are not recorded.

        Raises:
            StoreUnavailable: the store failed on read or write
        """
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)

        recent = await self._storage.list_since(identity, now - self.window)
        if len(recent) >= self.limit:
            oldest = min(entry.timestamp for entry in recent)
            retry_after_ms = self._retry_after_ms(oldest, now)
            logger.info(
                "rate_limiter: denied %s (%d/%d in window, retry in %dms)",
                identity,
                len(recent),
                self.limit,
                retry_after_ms,
            )
            return RateLimitDecision(
                allowed=False,
                count=len(recent),
                limit=self.limit,
                retry_after_ms=retry_after_ms,
            )

        entry = RateLimitEntry(
            identity=identity,
            timestamp=now,
            request_kind=request_kind,
            ip_address=ip_address or "unknown",
            user_agent=user_agent or "unknown",
        )
        await self._storage.insert(entry)

        return RateLimitDecision(
            allowed=True,
            count=len(recent) + 1,
            limit=self.limit,
            request_id=entry.request_id,
        )

    async def status(self, identity: str, now: datetime | None = None) -> RateLimitStatus:
        """Report the identity's current window without recording anything."""
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)

        recent = await self._storage.list_since(identity, now - self.window)
        limited = len(recent) >= self.limit

        next_allowed_at = None
        retry_after_ms = 0
        if limited and recent:
            oldest = min(entry.timestamp for entry in recent)
            next_allowed_at = oldest + self.window
            retry_after_ms = self._retry_after_ms(oldest, now)

        return RateLimitStatus(
            identity=identity,
            limited=limited,
            count=len(recent),
            limit=self.limit,
            window_ms=_ms(self.window),
            next_allowed_at=next_allowed_at,
            retry_after_ms=retry_after_ms,
        )

    async def stats(self, now: datetime | None = None, identity: str | None = None) -> RateLimitStats:
        """
        Monitoring view of the current window.

        With an identity, returns that identity's entries. Without one,
        returns totals and the busiest identities.
        """
        now = now or datetime.now(UTC)
        since = now - self.window

        if identity is not None:
            identity = normalize_identity(identity)
            entries = await self._storage.list_since(identity, since)
            return RateLimitStats(
                window_ms=_ms(self.window),
                total_requests=len(entries),
                unique_identities=1 if entries else 0,
                top_identities=[IdentityCount(identity=identity, count=len(entries))] if entries else [],
                entries=entries,
            )

        entries = await self._storage.list_all_since(since)
        counts = Counter(entry.identity for entry in entries)
        return RateLimitStats(
            window_ms=_ms(self.window),
            total_requests=len(entries),
            unique_identities=len(counts),
            top_identities=[
                IdentityCount(identity=ident, count=count) for ident, count in counts.most_common(_TOP_IDENTITIES)
            ],
        )
