"""Security audit models. Events are append-only and never updated."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class AuditAction(StrEnum):
    REQUEST_SENT = "request_sent"
    VALIDATE_ATTEMPT = "validate_attempt"
    VALIDATE_SUCCESS = "validate_success"
    VALIDATE_FAILURE = "validate_failure"
    TOKEN_USED = "token_used"
    RATE_LIMITED = "rate_limited"
    CLEANUP = "cleanup"


class AuditEvent(BaseModel):
    """Represents a row in the security_audit_log table."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    actor_identity: str | None = None
    action: AuditAction
    success: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error_detail: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)  # token_id, request_id, ...


class AuditFilter(BaseModel):
    """Narrow an audit query. Unset fields do not filter."""

    model_config = ConfigDict(extra="forbid")

    identity: str | None = None
    action: AuditAction | None = None
    since: datetime | None = None
    until: datetime | None = None

    def matches(self, event: AuditEvent) -> bool:
        if self.identity is not None and event.actor_identity != self.identity:
            return False
        if self.action is not None and event.action != self.action:
            return False
        if self.since is not None and event.timestamp < self.since:
            return False
        if self.until is not None and event.timestamp > self.until:
            return False
        return True


class ActionBreakdown(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0


class AuditStats(BaseModel):
    """Aggregate counts over a window of audit events."""

    total_events: int
    successful_events: int
    failed_events: int
    unique_identities: int
    action_breakdown: dict[str, ActionBreakdown]
    window_ms: int
    window_start: datetime
