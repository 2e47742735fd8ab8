"""Pending grant of organization membership."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UTCDateTime, UUIDMixin


class OrgInvite(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "org_invites"
    __table_args__ = (
        sa.UniqueConstraint("token_hash", name="uq_org_invites_token_hash"),
        sa.Index("ix_org_invites_org_email", "organization_id", "email"),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    email: str = Field(nullable=False, max_length=320)
    role: str = Field(nullable=False, max_length=20)  # admin | member | viewer
    token_hash: str = Field(nullable=False, max_length=64)
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    message: Optional[str] = Field(default=None, sa_type=sa.Text)
    expires_at: datetime = Field(nullable=False, sa_type=UTCDateTime)
    accepted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    revoked_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class OrgInviteWorkspaceAssignment(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """A workspace the invitee joins when the invite is accepted."""

    __tablename__ = "org_invite_workspace_assignments"
    __table_args__ = (
        sa.UniqueConstraint(
            "org_invite_id", "workspace_id",
            name="uq_org_invite_workspace_assignments_invite_workspace",
        ),
    )

    org_invite_id: uuid.UUID = Field(foreign_key="org_invites.id", nullable=False, index=True)
    workspace_id: uuid.UUID = Field(foreign_key="workspaces.id", nullable=False)
    access_level: str = Field(nullable=False, default="member", max_length=20)  # member | guest
