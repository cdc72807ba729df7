"""
Token ledger: per-token attempt tracking, one-time use and blacklisting.

A token becomes known to the ledger the first time it is presented. Each
presentation runs a fixed sequence of checks:

    blacklist -> reused -> attempts exhausted -> expired -> count the attempt

Counting the attempt is a single conditional increment against the token's
own row, so concurrent presentations of one token can never push attempts
past max_attempts. A presentation that finds attempts exhausted writes one
blacklist entry (insert-if-absent), which then rejects the token before any
other check until the entry expires.

Usage:
    ledger = TokenLedger(stores.tokens, stores.blacklist, config)
    result = await ledger.validate(token_id, email, "magic_link_verify")
    if isinstance(result, Valid):
        ...establish the session...
        await ledger.mark_used(token_id, email)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from linkguard.config import SecurityConfig
from linkguard.models.rate_limit import normalize_identity
from linkguard.models.token import (
    BlacklistEntry,
    BlacklistReason,
    ExpiredToken,
    InvalidReason,
    InvalidToken,
    MarkedUsed,
    MarkUsedResult,
    NotFound,
    TokenRecord,
    TokenStats,
    Valid,
    ValidationResult,
)
from linkguard.storage import BlacklistStorage, TokenStorage

logger = logging.getLogger(__name__)

# Re-reads after losing a conditional increment to a concurrent request.
_MAX_INCREMENT_RETRIES = 3


def _ms(delta: timedelta) -> int:
    return int(delta / timedelta(milliseconds=1))


class TokenLedger:
    """Tracks attempts, use and blacklisting for one-time tokens."""

    def __init__(self, tokens: TokenStorage, blacklist: BlacklistStorage, config: SecurityConfig) -> None:
        self._tokens = tokens
        self._blacklist = blacklist
        self.max_attempts = config.max_token_attempts
        self.token_expiry = config.token_expiry
        self.blacklist_retention = config.blacklist_retention
        self.min_token_length = config.min_token_length
        self.expiry_checked_actions = config.expiry_checked_actions

    def check_token_id(self, token_id: str) -> None:
        """Raise ValueError if token_id is shorter than min_token_length."""
        if len(token_id) < self.min_token_length:
            raise ValueError(f"token_id must be at least {self.min_token_length} characters")

    async def ensure(
        self,
        token_id: str,
        identity: str,
        action_kind: str,
        now: datetime | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenRecord:
        """
        Create the token's record on first sight; return the stored record either way.

        An existing record is never modified, so calling this repeatedly is safe.
        """
        self.check_token_id(token_id)
        now = now or datetime.now(UTC)
        record = TokenRecord(
            token_id=token_id,
            identity=normalize_identity(identity),
            action_kind=action_kind,
            created_at=now,
            attempts=0,
            last_attempt_at=now,
            used=False,
            ip_address=ip_address or "unknown",
            user_agent=user_agent or "unknown",
        )
        return await self._tokens.insert_if_absent(record)

    async def validate(
        self,
        token_id: str,
        identity: str,
        action_kind: str,
        now: datetime | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ValidationResult:
        """
        Run the validation checks for one presentation of a token.

        Args:
            token_id: Opaque token identifier
            identity: Identity the token was issued to
            action_kind: e.g. "magic_link_verify"; decides whether expiry applies
            now: Evaluation instant, defaults to the current UTC time

        Returns:
            Valid with the attempt count including this one, ExpiredToken,
            or InvalidToken with the reason

        Raises:
            ValueError: token_id is too short to be a real token
            StoreUnavailable: the store failed
        """
        self.check_token_id(token_id)
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)

        if await self._blacklist.get(token_id) is not None:
            logger.info("token_ledger: rejected blacklisted token for %s", identity)
            return InvalidToken(reason=InvalidReason.BLACKLISTED)

        record = await self.ensure(
            token_id, identity, action_kind, now, ip_address=ip_address, user_agent=user_agent
        )

        for _ in range(_MAX_INCREMENT_RETRIES):
            rejection = await self._check_record(record, action_kind, now)
            if rejection is not None:
                return rejection

            updated = await self._tokens.increment_attempts(token_id, self.max_attempts, now)
            if updated is not None:
                return Valid(attempts=updated.attempts, created_at=updated.created_at)

            # Lost the row to a concurrent request (used, exhausted or swept): re-read and decide again.
            current = await self._tokens.get(token_id)
            record = current or await self.ensure(
                token_id, identity, action_kind, now, ip_address=ip_address, user_agent=user_agent
            )

        logger.warning("token_ledger: gave up counting attempt for %s after contention", identity)
        return InvalidToken(reason=InvalidReason.ATTEMPTS_EXCEEDED)

    async def _check_record(self, record: TokenRecord, action_kind: str, now: datetime) -> ValidationResult | None:
        """Checks 2-4 of validate. None means the attempt may be counted."""
        if record.used:
            logger.info("token_ledger: reuse attempt for %s", record.identity)
            return InvalidToken(reason=InvalidReason.REUSED)

        if record.attempts >= self.max_attempts:
            await self._blacklist_token(
                record.token_id,
                record.identity,
                BlacklistReason.ATTEMPTS_EXCEEDED,
                now,
                metadata={"attempts": record.attempts, "action": action_kind},
            )
            return InvalidToken(reason=InvalidReason.ATTEMPTS_EXCEEDED)

        if action_kind in self.expiry_checked_actions:
            age = now - record.created_at
            if age > self.token_expiry:
                logger.info("token_ledger: expired token for %s, age %dms", record.identity, _ms(age))
                return ExpiredToken(age_ms=_ms(age))

        return None

    async def _blacklist_token(
        self,
        token_id: str,
        identity: str,
        reason: BlacklistReason,
        now: datetime,
        metadata: dict | None = None,
    ) -> bool:
        entry = BlacklistEntry(
            token_id=token_id,
            identity=identity,
            reason=reason,
            blacklisted_at=now,
            expires_at=now + self.blacklist_retention,
            metadata=metadata or {},
        )
        inserted = await self._blacklist.insert_if_absent(entry)
        if inserted:
            logger.warning("token_ledger: blacklisted token for %s (%s)", identity, reason.value)
        return inserted

    async def revoke(
        self,
        token_id: str,
        identity: str,
        now: datetime | None = None,
        reason: BlacklistReason = BlacklistReason.SECURITY_VIOLATION,
    ) -> bool:
        """
        Blacklist a token outright, e.g. after the caller detects tampering.

        Returns:
            True if the token was newly blacklisted, False if it already was
        """
        self.check_token_id(token_id)
        return await self._blacklist_token(
            token_id, normalize_identity(identity), reason, now or datetime.now(UTC)
        )

    async def mark_used(self, token_id: str, identity: str, now: datetime | None = None) -> MarkUsedResult:
        """
        Seal a token as spent once the caller's sign-in step succeeded.

        Every later validate for this token returns InvalidToken(reused).

        Returns:
            MarkedUsed, or NotFound if the token was never presented
        """
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)

        record = await self._tokens.mark_used(token_id, now)
        if record is None:
            logger.info("token_ledger: mark_used for unknown token (%s)", identity)
            return NotFound(token_id=token_id)

        if record.identity != identity:
            logger.warning("token_ledger: token issued to %s marked used by %s", record.identity, identity)
        return MarkedUsed(token_id=token_id, used_at=record.used_at or now)

    async def stats(self, window: timedelta = timedelta(hours=24), now: datetime | None = None) -> TokenStats:
        """Token activity for records created within the window."""
        now = now or datetime.now(UTC)
        records = await self._tokens.list_created_since(now - window)
        blacklisted = await self._blacklist.count_active(now)

        return TokenStats(
            window_ms=_ms(window),
            total_tokens=len(records),
            used_tokens=sum(1 for r in records if r.used),
            expired_tokens=sum(1 for r in records if not r.used and now - r.created_at > self.token_expiry),
            blacklisted_tokens=blacklisted,
            average_attempts=(sum(r.attempts for r in records) / len(records)) if records else 0.0,
        )
