"""Retention sweep result."""

from __future__ import annotations

from pydantic import BaseModel


class SweepReport(BaseModel):
    """Rows deleted per table by one sweep."""

    deleted_rate_limit: int = 0
    deleted_token_records: int = 0
    deleted_blacklist: int = 0
    deleted_audit_events: int = 0

    @property
    def total(self) -> int:
        return self.deleted_rate_limit + self.deleted_token_records + self.deleted_blacklist + self.deleted_audit_events
