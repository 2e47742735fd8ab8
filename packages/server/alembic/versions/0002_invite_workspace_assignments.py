"""Workspace assignments stored on org invites and applied on acceptance.

Revision ID: 0002_invite_workspace_assignments
Revises: 0001_identity_schema
Create Date: 2026-10-19 14:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0002_invite_workspace_assignments"
down_revision: Union[str, None] = "0001_identity_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "org_invite_workspace_assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "org_invite_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("org_invites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "workspace_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("access_level", sa.String(20), nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.UniqueConstraint(
            "org_invite_id", "workspace_id",
            name="uq_org_invite_workspace_assignments_invite_workspace",
        ),
        sa.CheckConstraint(
            "access_level IN ('member', 'guest')",
            name="ck_org_invite_workspace_assignments_access_level",
        ),
    )
    op.create_index(
        "ix_org_invite_workspace_assignments_org_invite_id",
        "org_invite_workspace_assignments",
        ["org_invite_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_org_invite_workspace_assignments_org_invite_id",
        table_name="org_invite_workspace_assignments",
    )
    op.drop_table("org_invite_workspace_assignments")
