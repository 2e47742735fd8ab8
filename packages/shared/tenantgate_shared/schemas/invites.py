"""
Invite request/response schemas.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .organizations import OrgRole, WorkspaceRole


class InviteRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


# Invite roles never map to OWNER
INVITE_ROLE_TO_ORG_ROLE: dict[InviteRole, OrgRole] = {
    InviteRole.ADMIN: OrgRole.ADMIN,
    InviteRole.MEMBER: OrgRole.PM,
    InviteRole.VIEWER: OrgRole.VIEWER,
}


class WorkspaceAccessLevel(str, Enum):
    MEMBER = "member"
    GUEST = "guest"


def workspace_role_for(
    invite_role: InviteRole, access_level: WorkspaceAccessLevel
) -> WorkspaceRole:
    """Viewer invites and guest access both land as workspace viewers."""
    if invite_role == InviteRole.VIEWER or access_level == WorkspaceAccessLevel.GUEST:
        return WorkspaceRole.VIEWER
    return WorkspaceRole.MEMBER


class WorkspaceAssignment(BaseModel):
    workspace_id: uuid.UUID
    access_level: WorkspaceAccessLevel = WorkspaceAccessLevel.MEMBER


class InviteCreateRequest(BaseModel):
    email: EmailStr
    role: str = Field(..., description="admin | member | viewer")
    message: Optional[str] = Field(default=None, max_length=1000)
    workspace_assignments: Optional[list[WorkspaceAssignment]] = Field(
        default=None,
        max_length=50,
        description="Workspaces the invitee joins on acceptance",
    )


class InviteResponse(BaseModel):
    id: uuid.UUID
    email: str
    role: str
    expires_at: datetime
    invite_link: Optional[str] = None
    workspace_assignments: list[WorkspaceAssignment] = Field(default_factory=list)


class InviteListResponse(BaseModel):
    data: list[InviteResponse]


class InvitePreviewResponse(BaseModel):
    email: str
    role: str
    org_name: str
    expires_at: datetime


class InviteAcceptRequest(BaseModel):
    token: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=1, max_length=200)
