"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "onboarding_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_key", sa.String(length=128), nullable=False),
        sa.Column("current_step", sa.String(length=40), nullable=False, server_default="WELCOME"),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("document", sa.Text(), nullable=False),
        sa.Column("committed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_onboarding_sessions_session_key", "onboarding_sessions", ["session_key"], unique=True)

    op.create_table(
        "onboarding_step_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_key", sa.String(length=128), nullable=False),
        sa.Column("from_step", sa.String(length=40), nullable=True),
        sa.Column("to_step", sa.String(length=40), nullable=False),
        sa.Column("reason", sa.String(length=200), nullable=True),
    )
    op.create_index("ix_onboarding_step_history_session_key", "onboarding_step_history", ["session_key"])

    op.create_table(
        "otp_challenges",
        sa.Column("challenge_id", sa.String(length=64), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_key", sa.String(length=128), nullable=False),
        sa.Column("phone_number", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cooldown_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("provider_challenge_id", sa.String(length=128), nullable=True),
        sa.Column("demo_fallback", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verifying_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("superseded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_otp_challenges_session_key", "otp_challenges", ["session_key"])
    op.create_index("ix_otp_challenges_status", "otp_challenges", ["status"])

    op.create_table(
        "provisioned_keys",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_key", sa.String(length=128), nullable=False),
        sa.Column("key_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("public_key", sa.String(length=200), nullable=False),
        sa.Column("private_key_encrypted", sa.Text(), nullable=False),
    )
    op.create_index("ix_provisioned_keys_session_key", "provisioned_keys", ["session_key"], unique=True)

def downgrade():
    op.drop_index("ix_provisioned_keys_session_key", table_name="provisioned_keys")
    op.drop_table("provisioned_keys")
    op.drop_index("ix_otp_challenges_status", table_name="otp_challenges")
    op.drop_index("ix_otp_challenges_session_key", table_name="otp_challenges")
    op.drop_table("otp_challenges")
    op.drop_index("ix_onboarding_step_history_session_key", table_name="onboarding_step_history")
    op.drop_table("onboarding_step_history")
    op.drop_index("ix_onboarding_sessions_session_key", table_name="onboarding_sessions")
    op.drop_table("onboarding_sessions")
