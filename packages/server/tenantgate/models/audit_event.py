"""Audit trail written in the same transaction as the change it records."""

from datetime import datetime
from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import JSONDocument, UTCDateTime, UUIDMixin, utcnow


class AuditEvent(UUIDMixin, SQLModel, table=True):
    __tablename__ = "audit_events"

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    actor_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    entity_type: str = Field(nullable=False, max_length=50)  # user | organization | invite
    entity_id: uuid.UUID = Field(nullable=False, index=True)
    action: str = Field(nullable=False, max_length=100)
    payload: dict = Field(default_factory=dict, sa_type=JSONDocument, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)
