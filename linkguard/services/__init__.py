"""Security services: rate limiting, token ledger, audit log and retention."""

from linkguard.services.audit_log import AuditLog
from linkguard.services.magic_link_guard import MagicLinkGuard
from linkguard.services.rate_limiter import RateLimiter
from linkguard.services.retention import RetentionSweeper
from linkguard.services.token_ledger import TokenLedger

__all__ = [
    "AuditLog",
    "MagicLinkGuard",
    "RateLimiter",
    "RetentionSweeper",
    "TokenLedger",
]
