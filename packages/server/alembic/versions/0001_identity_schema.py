"""Identity and onboarding schema: orgs, users, sessions, tokens, invites, outbox.

Revision ID: 0001_identity_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_identity_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid(name: str, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def _ts(name: str, nullable: bool = True, default_now: bool = False) -> sa.Column:
    kwargs = {"server_default": sa.text("now()")} if default_now else {}
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.create_table(
        "organizations",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(80), nullable=False),
        sa.Column("slug", sa.String(48), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="trial"),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default="{}"),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.UniqueConstraint("slug", name="uq_organizations_slug"),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])

    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        _uuid("organization_id", sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(), nullable=False, server_default=""),
        sa.Column("role", sa.String(), nullable=False, server_default="viewer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("email_verified_at"),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    op.create_table(
        "user_organizations",
        _uuid("id", primary_key=True),
        _uuid("user_id", sa.ForeignKey("users.id"), nullable=False),
        _uuid("organization_id", sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("joined_at", nullable=False, default_now=True),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_user_organizations_user_org"),
    )
    op.create_index("ix_user_organizations_organization_id", "user_organizations", ["organization_id"])

    op.create_table(
        "workspaces",
        _uuid("id", primary_key=True),
        _uuid("organization_id", sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(48), nullable=False),
        _uuid("owner_id", sa.ForeignKey("users.id"), nullable=True),
        _uuid("created_by", sa.ForeignKey("users.id"), nullable=True),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.UniqueConstraint("organization_id", "slug", name="uq_workspaces_org_slug"),
    )

    op.create_table(
        "workspace_members",
        _uuid("id", primary_key=True),
        _uuid("workspace_id", sa.ForeignKey("workspaces.id"), nullable=False),
        _uuid("user_id", sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )
    op.create_index("ix_workspace_members_user_id", "workspace_members", ["user_id"])

    op.create_table(
        "auth_sessions",
        _uuid("id", primary_key=True),
        _uuid("organization_id", sa.ForeignKey("organizations.id"), nullable=False),
        _uuid("user_id", sa.ForeignKey("users.id"), nullable=False),
        sa.Column("current_refresh_token_hash", sa.String(64), nullable=True),
        _ts("refresh_expires_at", nullable=False),
        _ts("created_at", nullable=False, default_now=True),
        _ts("last_seen_at", nullable=False, default_now=True),
        _ts("revoked_at"),
        sa.Column("revoke_reason", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.UniqueConstraint(
            "current_refresh_token_hash", name="uq_auth_sessions_refresh_token_hash"
        ),
    )
    op.create_index("ix_auth_sessions_user_id", "auth_sessions", ["user_id"])

    op.create_table(
        "email_verification_tokens",
        _uuid("id", primary_key=True),
        _uuid("user_id", sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        _ts("expires_at", nullable=False),
        _ts("used_at"),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        _ts("created_at", nullable=False, default_now=True),
        sa.UniqueConstraint("token_hash", name="uq_email_verification_tokens_token_hash"),
    )
    op.create_index(
        "ix_email_verification_tokens_user_id", "email_verification_tokens", ["user_id"]
    )

    op.create_table(
        "org_invites",
        _uuid("id", primary_key=True),
        _uuid("organization_id", sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        _uuid("created_by", sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        _ts("expires_at", nullable=False),
        _ts("accepted_at"),
        _ts("revoked_at"),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.UniqueConstraint("token_hash", name="uq_org_invites_token_hash"),
        sa.CheckConstraint("role IN ('admin', 'member', 'viewer')", name="ck_org_invites_role"),
    )
    op.create_index("ix_org_invites_org_email", "org_invites", ["organization_id", "email"])

    op.create_table(
        "auth_outbox",
        _uuid("id", primary_key=True),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        _ts("next_attempt_at"),
        _ts("claimed_at"),
        _ts("processing_started_at"),
        _ts("processed_at"),
        _ts("sent_at"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("created_at", nullable=False, default_now=True),
        _ts("updated_at", nullable=False, default_now=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_auth_outbox_status",
        ),
    )
    op.create_index(
        "ix_auth_outbox_status_next_attempt_at", "auth_outbox", ["status", "next_attempt_at"]
    )
    op.create_index("ix_auth_outbox_created_at", "auth_outbox", ["created_at"])

    op.create_table(
        "audit_events",
        _uuid("id", primary_key=True),
        _uuid("organization_id", sa.ForeignKey("organizations.id"), nullable=False),
        _uuid("actor_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        _uuid("entity_id", nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default="{}"),
        _ts("created_at", nullable=False, default_now=True),
    )
    op.create_index("ix_audit_events_organization_id", "audit_events", ["organization_id"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in (
        "audit_events",
        "auth_outbox",
        "org_invites",
        "email_verification_tokens",
        "auth_sessions",
        "workspace_members",
        "workspaces",
        "user_organizations",
        "users",
        "organizations",
    ):
        op.drop_table(table)
