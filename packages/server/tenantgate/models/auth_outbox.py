"""Durable outbox rows for identity side effects (email delivery)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONDocument, TimestampMixin, UTCDateTime, UUIDMixin


class AuthOutbox(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "auth_outbox"
    __table_args__ = (
        sa.Index("ix_auth_outbox_status_next_attempt_at", "status", "next_attempt_at"),
        sa.Index("ix_auth_outbox_created_at", "created_at"),
    )

    type: str = Field(nullable=False, max_length=100)
    payload: dict = Field(default_factory=dict, sa_type=JSONDocument, nullable=False)
    status: str = Field(default="pending", nullable=False, max_length=20)
    attempts: int = Field(default=0, nullable=False)
    next_attempt_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    claimed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    processing_started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    processed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    sent_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_error: Optional[str] = Field(default=None, sa_type=sa.Text)
