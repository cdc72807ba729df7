"""Create rate limit, token, blacklist and audit tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op


revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE rate_limit_entries (
            id              BIGSERIAL PRIMARY KEY,
            identity        TEXT NOT NULL,
            ts              TIMESTAMPTZ NOT NULL,
            request_kind    TEXT NOT NULL DEFAULT 'magic_link_request',
            ip_address      TEXT NOT NULL DEFAULT 'unknown',
            user_agent      TEXT NOT NULL DEFAULT 'unknown',
            request_id      UUID NOT NULL
        );
    """)
    op.execute("CREATE INDEX idx_rate_limit_identity_ts ON rate_limit_entries(identity, ts);")
    op.execute("CREATE INDEX idx_rate_limit_ts ON rate_limit_entries(ts);")

    op.execute("""
        CREATE TABLE token_records (
            token_id        TEXT PRIMARY KEY,
            identity        TEXT NOT NULL,
            action_kind     TEXT NOT NULL,
            created_at      TIMESTAMPTZ NOT NULL,
            attempts        INT NOT NULL DEFAULT 0,
            last_attempt_at TIMESTAMPTZ NOT NULL,
            used            BOOLEAN NOT NULL DEFAULT FALSE,
            used_at         TIMESTAMPTZ,
            ip_address      TEXT NOT NULL DEFAULT 'unknown',
            user_agent      TEXT NOT NULL DEFAULT 'unknown',

            CONSTRAINT token_id_length CHECK (char_length(token_id) >= 32),
            CONSTRAINT attempts_non_negative CHECK (attempts >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_token_records_identity_created ON token_records(identity, created_at);")
    op.execute("CREATE INDEX idx_token_records_created ON token_records(created_at);")

    op.execute("""
        CREATE TABLE token_blacklist (
            token_id        TEXT PRIMARY KEY,
            identity        TEXT NOT NULL,
            reason          TEXT NOT NULL,
            blacklisted_at  TIMESTAMPTZ NOT NULL,
            expires_at      TIMESTAMPTZ NOT NULL,
            metadata        JSONB NOT NULL DEFAULT '{}'::jsonb,

            CONSTRAINT valid_reason CHECK (
                reason IN ('attempts_exceeded', 'security_violation')
            )
        );
    """)
    op.execute("CREATE INDEX idx_token_blacklist_identity_ts ON token_blacklist(identity, blacklisted_at);")
    op.execute("CREATE INDEX idx_token_blacklist_expires ON token_blacklist(expires_at);")

    op.execute("""
        CREATE TABLE security_audit_log (
            id              UUID PRIMARY KEY,
            actor_identity  TEXT,
            action          TEXT NOT NULL,
            success         BOOLEAN NOT NULL,
            ts              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            error_detail    TEXT,
            ip_address      TEXT,
            user_agent      TEXT,
            metadata        JSONB NOT NULL DEFAULT '{}'::jsonb,

            CONSTRAINT valid_action CHECK (
                action IN (
                    'request_sent', 'validate_attempt', 'validate_success',
                    'validate_failure', 'token_used', 'rate_limited', 'cleanup'
                )
            )
        );
    """)
    op.execute("CREATE INDEX idx_audit_identity_ts ON security_audit_log(actor_identity, ts);")
    op.execute("CREATE INDEX idx_audit_action_ts ON security_audit_log(action, ts);")
    op.execute("CREATE INDEX idx_audit_ts ON security_audit_log(ts);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS security_audit_log CASCADE;")
    op.execute("DROP TABLE IF EXISTS token_blacklist CASCADE;")
    op.execute("DROP TABLE IF EXISTS token_records CASCADE;")
    op.execute("DROP TABLE IF EXISTS rate_limit_entries CASCADE;")
