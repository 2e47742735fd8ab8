"""Organization (tenant boundary) and its default workspace."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONDocument, TimestampMixin, UUIDMixin


class Organization(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"
    __table_args__ = (sa.UniqueConstraint("slug", name="uq_organizations_slug"),)

    name: str = Field(nullable=False, index=True, max_length=80)
    slug: str = Field(nullable=False, max_length=48)
    status: str = Field(default="trial", nullable=False)  # trial | active | suspended
    settings: dict = Field(default_factory=dict, sa_type=JSONDocument, nullable=False)


class Workspace(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "workspaces"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "slug", name="uq_workspaces_org_slug"),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    slug: str = Field(nullable=False, max_length=48)
    owner_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    created_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")


class WorkspaceMember(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "workspace_members"
    __table_args__ = (
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )

    workspace_id: uuid.UUID = Field(foreign_key="workspaces.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="workspace_member")  # workspace_owner | _member | _viewer
