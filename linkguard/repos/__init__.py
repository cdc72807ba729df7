"""
Repository layer for linkguard.

All SQL lives here and ONLY here. No database access outside this module.
"""

from linkguard.repos.audit_repo import AuditRepo
from linkguard.repos.blacklist_repo import BlacklistRepo
from linkguard.repos.rate_limit_repo import RateLimitRepo
from linkguard.repos.token_repo import TokenRepo

__all__ = [
    "RateLimitRepo",
    "TokenRepo",
    "BlacklistRepo",
    "AuditRepo",
]
