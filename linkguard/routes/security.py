"""Security routes: rate limiting, token validation, audit queries and sweeps."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from linkguard.models.audit import AuditAction, AuditEvent, AuditFilter, AuditStats
from linkguard.models.rate_limit import (
    RateLimitDecision,
    RateLimitRequest,
    RateLimitStats,
    RateLimitStatus,
    normalize_identity,
)
from linkguard.models.retention import SweepReport
from linkguard.models.token import (
    ExpiredToken,
    InvalidReason,
    InvalidToken,
    MarkedUsed,
    MarkUsedRequest,
    TokenStats,
    Valid,
    ValidateTokenRequest,
)
from linkguard.services.magic_link_guard import MagicLinkGuard

router = APIRouter(prefix="/security", tags=["security"])

_INVALID_DETAIL = {
    InvalidReason.BLACKLISTED: "This token has been invalidated for security reasons.",
    InvalidReason.REUSED: "This token has already been used.",
    InvalidReason.ATTEMPTS_EXCEEDED: "Too many attempts. Token has been invalidated for security.",
}


def get_guard(request: Request) -> MagicLinkGuard:
    """The app-wide guard, installed on app.state at startup."""
    guard = getattr(request.app.state, "guard", None)
    if guard is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Security layer not ready.")
    return guard


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _client(request: Request) -> tuple[str, str]:
    client_ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("user-agent", "unknown")
    return client_ip, user_agent


@router.post("/rate-limit", status_code=200)
async def check_rate_limit_endpoint(
    req: RateLimitRequest,
    request: Request,
    guard: MagicLinkGuard = Depends(get_guard),
) -> RateLimitDecision:
    """
    Check and record a magic link request for an email.

    Responds 429 with Retry-After when the email is over its quota.
    """
    client_ip, user_agent = _client(request)
    decision = await guard.request_link(req.email, ip_address=client_ip, user_agent=user_agent)

    if not decision.allowed:
        retry_seconds = math.ceil(decision.retry_after_ms / 1000)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=(
                "Too many magic link requests. "
                f"Please wait {math.ceil(decision.retry_after_ms / 60000)} minutes before trying again."
            ),
            headers={"Retry-After": str(retry_seconds)},
        )
    return decision


@router.get("/rate-limit", status_code=200)
async def rate_limit_stats_endpoint(guard: MagicLinkGuard = Depends(get_guard)) -> RateLimitStats:
    """Global rate limit usage for the current window."""
    return await guard.rate_limiter.stats()


@router.get("/rate-limit/{email}", status_code=200)
async def rate_limit_status_endpoint(email: str, guard: MagicLinkGuard = Depends(get_guard)) -> RateLimitStatus:
    """Current window for one email, without recording a request."""
    return await guard.rate_limiter.status(email)


@router.post("/tokens/validate", status_code=200)
async def validate_token_endpoint(
    req: ValidateTokenRequest,
    request: Request,
    guard: MagicLinkGuard = Depends(get_guard),
) -> Valid:
    """
    Validate a presented token.

    Invalid and expired tokens respond 401 with distinct messages.
    """
    client_ip, user_agent = _client(request)
    try:
        result = await guard.redeem(
            req.token_id, req.email, req.action, ip_address=client_ip, user_agent=user_agent
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(result, ExpiredToken):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="This magic link has expired. Please request a new one.",
            headers={"X-Token-Status": "expired"},
        )
    if isinstance(result, InvalidToken):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_INVALID_DETAIL[result.reason],
            headers={"X-Token-Status": result.reason.value},
        )
    return result


@router.post("/tokens/mark-used", status_code=200)
async def mark_used_endpoint(req: MarkUsedRequest, guard: MagicLinkGuard = Depends(get_guard)) -> MarkedUsed:
    """Seal a token as spent after the session was established."""
    result = await guard.complete(req.token_id, req.email)
    if not isinstance(result, MarkedUsed):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token usage record not found.")
    return result


@router.get("/tokens/stats", status_code=200)
async def token_stats_endpoint(
    window_hours: int = Query(24, ge=1, le=24 * 90),
    guard: MagicLinkGuard = Depends(get_guard),
) -> TokenStats:
    return await guard.ledger.stats(timedelta(hours=window_hours))


@router.get("/audit", status_code=200)
async def audit_query_endpoint(
    email: str | None = None,
    action: AuditAction | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    guard: MagicLinkGuard = Depends(get_guard),
) -> list[AuditEvent]:
    """Audit events, newest first. since and until are inclusive; naive times are UTC."""
    audit_filter = AuditFilter(
        identity=normalize_identity(email) if email else None,
        action=action,
        since=_as_utc(since),
        until=_as_utc(until),
    )
    return await guard.audit.query(audit_filter, limit=limit, offset=offset)


@router.get("/audit/stats", status_code=200)
async def audit_stats_endpoint(
    window_hours: int = Query(24, ge=1, le=24 * 90),
    action: AuditAction | None = None,
    guard: MagicLinkGuard = Depends(get_guard),
) -> AuditStats:
    return await guard.audit.stats(timedelta(hours=window_hours), action)


@router.post("/sweep", status_code=200)
async def sweep_endpoint(guard: MagicLinkGuard = Depends(get_guard)) -> SweepReport:
    """Run one retention sweep now."""
    return await guard.sweeper.sweep()
