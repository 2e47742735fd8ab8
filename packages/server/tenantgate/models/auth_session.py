"""Refresh-token session lineage."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UTCDateTime, UUIDMixin, utcnow


class AuthSession(UUIDMixin, SQLModel, table=True):
    __tablename__ = "auth_sessions"
    __table_args__ = (
        # NULLs never collide, so revoked sessions may all clear their hash
        sa.UniqueConstraint(
            "current_refresh_token_hash", name="uq_auth_sessions_refresh_token_hash"
        ),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    current_refresh_token_hash: Optional[str] = Field(default=None, max_length=64)
    refresh_expires_at: datetime = Field(nullable=False, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)
    last_seen_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)
    revoked_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    revoke_reason: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=512)
    ip_address: Optional[str] = Field(default=None, max_length=64)
