"""User model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UTCDateTime, UUIDMixin


class User(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (sa.UniqueConstraint("email", name="uq_users_email"),)

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    email: str = Field(nullable=False, max_length=320)  # normalized: trimmed, lowercased
    password_hash: str = Field(nullable=False)
    first_name: str = Field(default="", nullable=False)
    last_name: str = Field(default="", nullable=False)
    role: str = Field(default="viewer", nullable=False)  # admin | pm | viewer
    is_active: bool = Field(default=True, nullable=False)
    is_email_verified: bool = Field(default=False, nullable=False)
    email_verified_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
