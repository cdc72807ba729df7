"""
Magic link guard: the sign-in flow as seen by the security layer.

Wires RateLimiter, TokenLedger and AuditLog together so that every
significant step leaves an audit event whatever its outcome:

    request_link   rate limit check      -> request_sent | rate_limited
    redeem         token validation      -> validate_attempt + validate_success | validate_failure
    complete       seal token as spent   -> token_used

StoreUnavailable from the primary operation is audited as a failure and
re-raised unchanged.
"""

from __future__ import annotations

from datetime import UTC, datetime

from linkguard.config import SecurityConfig
from linkguard.errors import StoreUnavailable
from linkguard.models.audit import AuditAction
from linkguard.models.rate_limit import RateLimitDecision, normalize_identity
from linkguard.models.token import (
    ExpiredToken,
    InvalidToken,
    MarkedUsed,
    MarkUsedResult,
    Valid,
    ValidationResult,
)
from linkguard.services.audit_log import AuditLog
from linkguard.services.rate_limiter import RateLimiter
from linkguard.services.retention import RetentionSweeper
from linkguard.services.token_ledger import TokenLedger
from linkguard.storage import SecurityStores

MAGIC_LINK_VERIFY = "magic_link_verify"


class MagicLinkGuard:
    """Security checks and audit trail for one deployment's magic link flow."""

    def __init__(self, stores: SecurityStores, config: SecurityConfig, audit: AuditLog | None = None) -> None:
        self.config = config
        self.stores = stores
        self.audit = audit or AuditLog(stores.audit, config)
        self.rate_limiter = RateLimiter(stores.rate_limits, config)
        self.ledger = TokenLedger(stores.tokens, stores.blacklist, config)
        self.sweeper = RetentionSweeper(stores, config, audit=self.audit)

    async def request_link(
        self,
        identity: str,
        now: datetime | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RateLimitDecision:
        """Decide whether a sign-in link may be sent to identity."""
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)
        context = {"ip_address": ip_address, "user_agent": user_agent, "timestamp": now}

        try:
            decision = await self.rate_limiter.check_and_record(
                identity, now, ip_address=ip_address, user_agent=user_agent
            )
        except StoreUnavailable as e:
            self.audit.record(AuditAction.REQUEST_SENT, False, identity, str(e), **context)
            raise

        if decision.allowed:
            self.audit.record(
                AuditAction.REQUEST_SENT,
                True,
                identity,
                request_id=str(decision.request_id),
                count=decision.count,
                **context,
            )
        else:
            self.audit.record(
                AuditAction.RATE_LIMITED,
                False,
                identity,
                "Rate limit exceeded",
                retry_after_ms=decision.retry_after_ms,
                count=decision.count,
                **context,
            )
        return decision

    async def redeem(
        self,
        token_id: str,
        identity: str,
        action_kind: str = MAGIC_LINK_VERIFY,
        now: datetime | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ValidationResult:
        """
        Validate a presented token and audit the attempt and its outcome.

        Raises:
            ValueError: token_id is shorter than min_token_length; nothing is audited
            StoreUnavailable: the store failed
        """
        self.ledger.check_token_id(token_id)
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)
        context = {"ip_address": ip_address, "user_agent": user_agent, "timestamp": now, "token_id": token_id}

        self.audit.record(AuditAction.VALIDATE_ATTEMPT, True, identity, action_kind=action_kind, **context)
        try:
            result = await self.ledger.validate(
                token_id, identity, action_kind, now, ip_address=ip_address, user_agent=user_agent
            )
        except StoreUnavailable as e:
            self.audit.record(AuditAction.VALIDATE_FAILURE, False, identity, str(e), **context)
            raise

        if isinstance(result, Valid):
            self.audit.record(AuditAction.VALIDATE_SUCCESS, True, identity, attempts=result.attempts, **context)
        elif isinstance(result, ExpiredToken):
            self.audit.record(AuditAction.VALIDATE_FAILURE, False, identity, "expired", **context)
        elif isinstance(result, InvalidToken):
            self.audit.record(AuditAction.VALIDATE_FAILURE, False, identity, result.reason.value, **context)
        return result

    async def complete(self, token_id: str, identity: str, now: datetime | None = None) -> MarkUsedResult:
        """Seal the token after the downstream sign-in step succeeded."""
        now = now or datetime.now(UTC)
        identity = normalize_identity(identity)

        try:
            result = await self.ledger.mark_used(token_id, identity, now)
        except StoreUnavailable as e:
            self.audit.record(AuditAction.TOKEN_USED, False, identity, str(e), timestamp=now, token_id=token_id)
            raise

        if isinstance(result, MarkedUsed):
            self.audit.record(AuditAction.TOKEN_USED, True, identity, timestamp=now, token_id=token_id)
        else:
            self.audit.record(AuditAction.TOKEN_USED, False, identity, "not_found", timestamp=now, token_id=token_id)
        return result
