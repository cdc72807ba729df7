"""Exceptions raised by linkguard.

Expected protocol outcomes (rate limited, invalid token, expired token,
unknown token) are returned as typed results, never raised. Only a failing
store is exceptional.
"""

from __future__ import annotations


class StoreUnavailable(Exception):
    """The persistent store could not complete an operation.

    Not retried locally; callers apply their own retry/backoff policy.
    """

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"store unavailable during {operation}{detail}")
