"""User-Organization membership."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UTCDateTime, UUIDMixin, utcnow


class UserOrganization(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "user_organizations"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "organization_id", name="uq_user_organizations_user_org"),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="viewer")  # owner | admin | pm | viewer
    is_active: bool = Field(default=True, nullable=False)
    joined_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)
