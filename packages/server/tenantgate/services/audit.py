"""Audit records written inside the caller's transaction."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.models.audit_event import AuditEvent


def record_audit(
    db: AsyncSession,
    *,
    organization_id: uuid.UUID,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    now: datetime,
    actor_id: Optional[uuid.UUID] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    event = AuditEvent(
        organization_id=organization_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        payload=payload or {},
        created_at=now,
    )
    db.add(event)
    return event
