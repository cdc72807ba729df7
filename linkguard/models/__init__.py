"""
Pydantic models for linkguard.

All data shapes defined here. No imports from db, repos, or services.
"""

from linkguard.models.audit import ActionBreakdown, AuditAction, AuditEvent, AuditFilter, AuditStats
from linkguard.models.rate_limit import (
    IdentityCount,
    RateLimitDecision,
    RateLimitEntry,
    RateLimitStats,
    RateLimitStatus,
    normalize_identity,
)
from linkguard.models.retention import SweepReport
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

__all__ = [
    # Rate limit models
    "RateLimitEntry",
    "RateLimitDecision",
    "RateLimitStatus",
    "RateLimitStats",
    "IdentityCount",
    "normalize_identity",
    # Token models
    "TokenRecord",
    "BlacklistEntry",
    "BlacklistReason",
    "InvalidReason",
    "Valid",
    "ExpiredToken",
    "InvalidToken",
    "ValidationResult",
    "MarkedUsed",
    "NotFound",
    "MarkUsedResult",
    "TokenStats",
    # Audit models
    "AuditAction",
    "AuditEvent",
    "AuditFilter",
    "AuditStats",
    "ActionBreakdown",
    # Retention
    "SweepReport",
]
