"""
Outbox event schemas.

Payload keys are camelCase because the documents are also read by
non-Python consumers of the auth_outbox table.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OutboxStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OutboxEventType(str, Enum):
    EMAIL_VERIFICATION_REQUESTED = "auth.email_verification.requested"
    INVITE_CREATED = "auth.invite.created"


OUTBOX_TRANSITIONS: dict[OutboxStatus, list[OutboxStatus]] = {
    OutboxStatus.PENDING: [OutboxStatus.PROCESSING],
    OutboxStatus.PROCESSING: [
        OutboxStatus.COMPLETED,
        OutboxStatus.PENDING,
        OutboxStatus.FAILED,
    ],
    OutboxStatus.FAILED: [OutboxStatus.PROCESSING, OutboxStatus.PENDING],
    OutboxStatus.COMPLETED: [],
}

MAX_ATTEMPTS = 3

# Delay before the next attempt, indexed by attempts already made - 1.
# The last interval repeats for any later attempt.
RETRY_BACKOFF: tuple[timedelta, ...] = (
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=2),
)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EmailVerificationRequestedPayload(_Payload):
    user_id: str = Field(alias="userId")
    email: str
    token: str
    full_name: str = Field(default="", alias="fullName")


class InviteCreatedPayload(_Payload):
    email: str
    token: str
    org_name: str = Field(alias="orgName")
    role: str
    message: Optional[str] = None
    expires_at: str = Field(alias="expiresAt")
