"""Rate limit models. One RateLimitEntry row per accepted send-link request."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field

MAGIC_LINK_REQUEST = "magic_link_request"


def normalize_identity(identity: str) -> str:
    """Identities are compared case-insensitively, the way email addresses are."""
    return identity.strip().lower()


class RateLimitEntry(BaseModel):
    """Core rate limit model. Represents a row in the rate_limit_entries table."""

    model_config = ConfigDict(frozen=True)

    identity: str
    timestamp: datetime
    request_kind: str = MAGIC_LINK_REQUEST
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    request_id: UUID = Field(default_factory=uuid4)


class RateLimitDecision(BaseModel):
    """Result of check_and_record. A denial is a normal result, not an error."""

    allowed: bool
    count: int
    limit: int
    retry_after_ms: int = 0
    request_id: UUID | None = None  # set when the request was recorded


class RateLimitStatus(BaseModel):
    """Read-only view of an identity's current window."""

    identity: str
    limited: bool
    count: int
    limit: int
    window_ms: int
    next_allowed_at: datetime | None = None
    retry_after_ms: int = 0


class IdentityCount(BaseModel):
    identity: str
    count: int


class RateLimitStats(BaseModel):
    """Monitoring snapshot of the current window, globally or for one identity."""

    window_ms: int
    total_requests: int
    unique_identities: int
    top_identities: list[IdentityCount] = Field(default_factory=list)
    entries: list[RateLimitEntry] = Field(default_factory=list)  # only for single-identity stats


class RateLimitRequest(BaseModel):
    """What the client sends to POST /security/rate-limit."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    request_kind: str = MAGIC_LINK_REQUEST
