"""linkguard: rate limiting, token ledger and audit trail for magic link sign-in."""

__version__ = "0.1.0"
