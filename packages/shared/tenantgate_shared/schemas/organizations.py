"""
Organization-related Pydantic schemas shared between server and worker.

Covers: org statuses, OrgSettings defaults written at registration,
membership roles.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OrgStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class OrgRole(str, Enum):
    """Role held through a UserOrganization membership."""

    OWNER = "owner"
    ADMIN = "admin"
    PM = "pm"
    VIEWER = "viewer"


class UserRole(str, Enum):
    """Platform role stored on the user record."""

    ADMIN = "admin"
    PM = "pm"
    VIEWER = "viewer"


class WorkspaceRole(str, Enum):
    OWNER = "workspace_owner"
    MEMBER = "workspace_member"
    VIEWER = "workspace_viewer"


ADMIN_ORG_ROLES = frozenset({OrgRole.OWNER.value, OrgRole.ADMIN.value})


# ---------------------------------------------------------------------------
# Org Settings
# ---------------------------------------------------------------------------

class SecuritySettings(BaseModel):
    require_email_verification: bool = Field(
        default=True,
        description="Unverified users may not sign in",
    )


class OrgSettings(BaseModel):
    """Org-level settings written at creation. All fields optional with defaults."""

    timezone: str = Field(default="UTC")
    locale: str = Field(default="en-US")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
