"""Single-use email verification token (hash only)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UTCDateTime, UUIDMixin, utcnow


class EmailVerificationToken(UUIDMixin, SQLModel, table=True):
    __tablename__ = "email_verification_tokens"
    __table_args__ = (
        sa.UniqueConstraint("token_hash", name="uq_email_verification_tokens_token_hash"),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    token_hash: str = Field(nullable=False, max_length=64)
    expires_at: datetime = Field(nullable=False, sa_type=UTCDateTime)
    used_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    ip: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)
