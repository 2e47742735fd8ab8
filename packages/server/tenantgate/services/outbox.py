"""
Outbox service: durable, at-least-once delivery of identity emails.

Rows are written by registration and invite flows inside their own
transactions (``enqueue_event``). The dispatcher claims due rows in a short
transaction using ``FOR UPDATE SKIP LOCKED``, commits the claim, and only then
performs delivery, so no row lock is held across the email provider call and
concurrent replicas never claim the same row.

Every status change after the claim is a conditional UPDATE fenced on
``status = 'processing'`` and the claim timestamp; an update that matches no
row means another claimer owns the event now.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from tenantgate.core.config import Settings
from tenantgate.core.database import set_local_timeouts
from tenantgate.core.logging import mask_email
from tenantgate.models.auth_outbox import AuthOutbox
from tenantgate.models.base import utcnow
from tenantgate.services.email import (
    EmailSender,
    invite_link,
    render_invite_email,
    render_verification_email,
    verification_link,
)

from tenantgate_shared.schemas.outbox import (
    MAX_ATTEMPTS,
    OUTBOX_TRANSITIONS,
    RETRY_BACKOFF,
    EmailVerificationRequestedPayload,
    InviteCreatedPayload,
    OutboxEventType,
    OutboxStatus,
)

log = structlog.get_logger()

MAX_ERROR_LENGTH = 2000

Handler = Callable[[dict], Awaitable[None]]


def enqueue_event(
    db: AsyncSession,
    event_type: OutboxEventType,
    payload: BaseModel,
    now: datetime,
) -> AuthOutbox:
    """Add an outbox row to the caller's transaction."""
    event = AuthOutbox(
        type=event_type.value,
        payload=payload.model_dump(by_alias=True, exclude_none=True),
        status=OutboxStatus.PENDING.value,
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(event)
    return event


def retry_delay(attempts: int) -> timedelta:
    """Backoff after ``attempts`` failed attempts; the last interval repeats."""
    index = min(max(attempts, 1), len(RETRY_BACKOFF)) - 1
    return RETRY_BACKOFF[index]


def check_transition(current: OutboxStatus, target: OutboxStatus) -> None:
    """Raise if the state machine has no edge from ``current`` to ``target``."""
    if target not in OUTBOX_TRANSITIONS.get(current, []):
        raise ValueError(f"Outbox row cannot move from {current.value} to {target.value}")


@dataclass
class DispatchSummary:
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0


class OutboxDispatcher:
    """Claims and processes outbox rows. Safe to run on several replicas at once."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_sender: EmailSender,
        settings: Settings,
    ):
        self._sessions = session_factory
        self._email = email_sender
        self._settings = settings
        # Avoids overlapping ticks in this process only; the skip-locked claim
        # is what keeps replicas apart.
        self.is_processing = False
        self._handlers: dict[str, Handler] = {
            OutboxEventType.EMAIL_VERIFICATION_REQUESTED.value: self._send_verification_email,
            OutboxEventType.INVITE_CREATED.value: self._send_invite_email,
        }

    @property
    def claim_timeout(self) -> timedelta:
        return timedelta(seconds=self._settings.outbox_claim_timeout_seconds)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_once(self, now: Optional[datetime] = None) -> DispatchSummary:
        """Claim one batch and process every claimed row."""
        summary = DispatchSummary()
        if not self._settings.outbox_enabled:
            return summary
        if self.is_processing:
            log.debug("outbox.tick_skipped", reason="already_processing")
            return summary

        self.is_processing = True
        try:
            events = await self.claim_batch(now=now)
            summary.claimed = len(events)
            for event in events:
                outcome = await self.process_event(event)
                setattr(summary, outcome, getattr(summary, outcome) + 1)
        finally:
            self.is_processing = False

        if summary.claimed:
            log.info(
                "outbox.batch_processed",
                claimed=summary.claimed,
                completed=summary.completed,
                retried=summary.retried,
                failed=summary.failed,
                skipped=summary.skipped,
            )
        return summary

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def _claimable(self, now: datetime):
        return or_(
            and_(
                AuthOutbox.status == OutboxStatus.PENDING.value,
                or_(AuthOutbox.next_attempt_at.is_(None), AuthOutbox.next_attempt_at <= now),
            ),
            and_(
                AuthOutbox.status == OutboxStatus.FAILED.value,
                AuthOutbox.attempts < MAX_ATTEMPTS,
                AuthOutbox.next_attempt_at <= now,
            ),
            and_(
                AuthOutbox.status == OutboxStatus.PROCESSING.value,
                AuthOutbox.claimed_at < now - self.claim_timeout,
            ),
        )

    async def claim_batch(self, now: Optional[datetime] = None) -> list[AuthOutbox]:
        """Mark up to ``outbox_batch_size`` due rows as processing and return them.

        The claim commits before this returns; rows are re-read afterwards in a
        separate session.
        """
        now = now or utcnow()
        async with self._sessions.begin() as db:
            await set_local_timeouts(db, self._settings.outbox_statement_timeout_ms)
            result = await db.execute(
                select(AuthOutbox.id)
                .where(self._claimable(now))
                .order_by(AuthOutbox.created_at)
                .limit(self._settings.outbox_batch_size)
                .with_for_update(skip_locked=True)
            )
            ids = list(result.scalars().all())
            if not ids:
                return []
            await db.execute(
                update(AuthOutbox)
                .where(AuthOutbox.id.in_(ids))
                .values(
                    status=OutboxStatus.PROCESSING.value,
                    claimed_at=now,
                    processing_started_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

        async with self._sessions() as db:
            result = await db.execute(
                select(AuthOutbox)
                .where(AuthOutbox.id.in_(ids))
                .order_by(AuthOutbox.created_at)
            )
            events = list(result.scalars().all())

        log.info("outbox.claimed", count=len(events))
        return events

    # ------------------------------------------------------------------
    # Process
    # ------------------------------------------------------------------

    async def process_event(self, event: AuthOutbox) -> str:
        """Run the handler for one claimed row and record the outcome.

        Returns the DispatchSummary field to count it under.
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            # unknown types never retry
            updated = await self._finish(
                event,
                status=OutboxStatus.FAILED,
                attempts=MAX_ATTEMPTS,
                next_attempt_at=None,
                last_error=f"Unknown outbox event type: {event.type}",
            )
            log.error("outbox.unknown_type", event_id=str(event.id), type=event.type)
            return "failed" if updated else "skipped"

        try:
            await handler(event.payload)
        except Exception as exc:
            return await self._record_failure(event, exc)

        done_at = utcnow()
        if not await self._finish(
            event,
            status=OutboxStatus.COMPLETED,
            processed_at=done_at,
            sent_at=done_at,
            last_error=None,
        ):
            return "skipped"
        log.info("outbox.completed", event_id=str(event.id), type=event.type)
        return "completed"

    async def _record_failure(self, event: AuthOutbox, exc: Exception) -> str:
        now = utcnow()
        attempts = event.attempts + 1
        error = f"{type(exc).__name__}: {exc}"[:MAX_ERROR_LENGTH]

        if attempts >= MAX_ATTEMPTS:
            updated = await self._finish(
                event,
                status=OutboxStatus.FAILED,
                attempts=attempts,
                next_attempt_at=None,
                last_error=error,
            )
            log.error(
                "outbox.failed",
                event_id=str(event.id),
                type=event.type,
                attempts=attempts,
                error=error,
            )
            return "failed" if updated else "skipped"

        next_attempt_at = now + retry_delay(attempts)
        updated = await self._finish(
            event,
            status=OutboxStatus.PENDING,
            attempts=attempts,
            next_attempt_at=next_attempt_at,
            last_error=error,
        )
        log.warning(
            "outbox.retry_scheduled",
            event_id=str(event.id),
            type=event.type,
            attempts=attempts,
            next_attempt_at=next_attempt_at.isoformat(),
            error=error,
        )
        return "retried" if updated else "skipped"

    async def _finish(self, event: AuthOutbox, status: OutboxStatus, **values) -> bool:
        """Move a claimed row out of processing if this claim still owns it."""
        check_transition(OutboxStatus.PROCESSING, status)
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(AuthOutbox)
                .where(
                    AuthOutbox.id == event.id,
                    AuthOutbox.status == OutboxStatus.PROCESSING.value,
                    AuthOutbox.claimed_at == event.claimed_at,
                )
                .values(status=status.value, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            log.warning("outbox.claim_lost", event_id=str(event.id), target=status.value)
            return False
        return True

    async def requeue(self, event_id: uuid.UUID) -> bool:
        """Manually return a terminally failed row to the queue with a fresh attempt budget."""
        check_transition(OutboxStatus.FAILED, OutboxStatus.PENDING)
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(AuthOutbox)
                .where(
                    AuthOutbox.id == event_id,
                    AuthOutbox.status == OutboxStatus.FAILED.value,
                )
                .values(
                    status=OutboxStatus.PENDING.value,
                    attempts=0,
                    next_attempt_at=None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
        requeued = result.rowcount == 1
        if requeued:
            log.info("outbox.requeued", event_id=str(event_id))
        return requeued

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _send_verification_email(self, payload: dict) -> None:
        data = EmailVerificationRequestedPayload.model_validate(payload)
        link = verification_link(self._settings.frontend_url, data.token)
        await self._email.send(render_verification_email(data.email, data.full_name, link))
        log.info("outbox.verification_email_sent", user_id=data.user_id,
                 to=mask_email(data.email))

    async def _send_invite_email(self, payload: dict) -> None:
        data = InviteCreatedPayload.model_validate(payload)
        link = invite_link(self._settings.frontend_url, data.token)
        await self._email.send(
            render_invite_email(data.email, data.org_name, data.role, link, data.message)
        )
        log.info("outbox.invite_email_sent", to=mask_email(data.email))
