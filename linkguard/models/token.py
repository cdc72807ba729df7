"""Token ledger models: per-token usage records, blacklist entries and validation results."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TokenRecord(BaseModel):
    """Represents a row in the token_records table. Created on first validation attempt."""

    token_id: str
    identity: str
    action_kind: str
    created_at: datetime
    attempts: int = Field(default=0, ge=0)
    last_attempt_at: datetime
    used: bool = False
    used_at: datetime | None = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"


class BlacklistReason(StrEnum):
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    SECURITY_VIOLATION = "security_violation"


class BlacklistEntry(BaseModel):
    """Represents a row in the token_blacklist table. At most one per token_id."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    identity: str
    reason: BlacklistReason
    blacklisted_at: datetime
    expires_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------


class InvalidReason(StrEnum):
    REUSED = "reused"
    BLACKLISTED = "blacklisted"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"


class Valid(BaseModel):
    kind: Literal["valid"] = "valid"
    attempts: int
    created_at: datetime | None = None


class ExpiredToken(BaseModel):
    kind: Literal["expired"] = "expired"
    age_ms: int = 0


class InvalidToken(BaseModel):
    kind: Literal["invalid"] = "invalid"
    reason: InvalidReason


ValidationResult = Annotated[Valid | ExpiredToken | InvalidToken, Field(discriminator="kind")]


class MarkedUsed(BaseModel):
    kind: Literal["ok"] = "ok"
    token_id: str
    used_at: datetime


class NotFound(BaseModel):
    kind: Literal["not_found"] = "not_found"
    token_id: str


MarkUsedResult = Annotated[MarkedUsed | NotFound, Field(discriminator="kind")]


class TokenStats(BaseModel):
    """Aggregate token activity over a window."""

    window_ms: int
    total_tokens: int
    used_tokens: int
    expired_tokens: int
    blacklisted_tokens: int
    average_attempts: float


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------


class ValidateTokenRequest(BaseModel):
    """What the client sends to POST /security/tokens/validate."""

    model_config = ConfigDict(extra="forbid")

    token_id: str = Field(..., min_length=32, max_length=512)
    email: EmailStr
    action: str = "magic_link_verify"


class MarkUsedRequest(BaseModel):
    """What the client sends to POST /security/tokens/mark-used."""

    model_config = ConfigDict(extra="forbid")

    token_id: str = Field(..., min_length=32, max_length=512)
    email: EmailStr
