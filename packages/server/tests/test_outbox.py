"""
Tests for the auth outbox dispatcher.

Covers:
- Delivery of verification and invite emails
- Exactly-once processing across concurrent dispatchers
- Retry backoff and terminal failure
- Stale claim recovery and claim fencing
- Manual requeue
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlmodel import select

from tenantgate.models.auth_outbox import AuthOutbox
from tenantgate.models.base import utcnow
from tenantgate.services.outbox import (
    OutboxDispatcher,
    check_transition,
    enqueue_event,
    retry_delay,
)

from tenantgate_shared.schemas.outbox import (
    MAX_ATTEMPTS,
    OUTBOX_TRANSITIONS,
    EmailVerificationRequestedPayload,
    InviteCreatedPayload,
    OutboxEventType,
    OutboxStatus,
)


async def _enqueue_verification(session_factory, email="una@example.com", now=None):
    async with session_factory.begin() as db:
        event = enqueue_event(
            db,
            OutboxEventType.EMAIL_VERIFICATION_REQUESTED,
            EmailVerificationRequestedPayload(
                user_id="00000000-0000-0000-0000-000000000001",
                email=email,
                token="raw-token",
                full_name="Una",
            ),
            now or utcnow(),
        )
    return event.id


async def _get(session_factory, event_id) -> AuthOutbox:
    async with session_factory() as db:
        return await db.get(AuthOutbox, event_id)


class TestRetryDelay:
    @pytest.mark.parametrize(
        "attempts,expected",
        [
            (0, timedelta(minutes=5)),
            (1, timedelta(minutes=5)),
            (2, timedelta(minutes=30)),
            (3, timedelta(hours=2)),
            (7, timedelta(hours=2)),
        ],
    )
    def test_backoff(self, attempts, expected):
        assert retry_delay(attempts) == expected


class TestStatusTransitions:
    def test_completed_is_terminal(self):
        assert OUTBOX_TRANSITIONS[OutboxStatus.COMPLETED] == []
        with pytest.raises(ValueError):
            check_transition(OutboxStatus.COMPLETED, OutboxStatus.PENDING)

    def test_failed_can_be_requeued(self):
        check_transition(OutboxStatus.FAILED, OutboxStatus.PENDING)

    @pytest.mark.parametrize(
        "target", [OutboxStatus.COMPLETED, OutboxStatus.PENDING, OutboxStatus.FAILED]
    )
    def test_processing_outcomes(self, target):
        check_transition(OutboxStatus.PROCESSING, target)

    def test_pending_cannot_skip_processing(self):
        with pytest.raises(ValueError, match="pending to completed"):
            check_transition(OutboxStatus.PENDING, OutboxStatus.COMPLETED)

    async def test_finish_rejects_undefined_edge(self, dispatcher, session_factory):
        await _enqueue_verification(session_factory)
        [event] = await dispatcher.claim_batch()
        with pytest.raises(ValueError):
            await dispatcher._finish(event, status=OutboxStatus.PROCESSING)


class TestDelivery:
    async def test_verification_email(self, dispatcher, email_sender, session_factory, settings):
        event_id = await _enqueue_verification(session_factory)

        summary = await dispatcher.run_once()

        assert summary.claimed == 1
        assert summary.completed == 1
        message = email_sender.send.await_args.args[0]
        assert message.to == "una@example.com"
        assert f"{settings.frontend_url}/verify-email?token=raw-token" in message.text

        event = await _get(session_factory, event_id)
        assert event.status == OutboxStatus.COMPLETED.value
        assert event.processed_at is not None
        assert event.sent_at is not None
        assert event.last_error is None

    async def test_invite_email(self, dispatcher, email_sender, session_factory, settings):
        now = utcnow()
        async with session_factory.begin() as db:
            enqueue_event(
                db,
                OutboxEventType.INVITE_CREATED,
                InviteCreatedPayload(
                    email="new@example.com",
                    token="invite-token",
                    org_name="Acme Corp",
                    role="member",
                    expires_at=(now + timedelta(days=7)).isoformat(),
                ),
                now,
            )

        await dispatcher.run_once()

        message = email_sender.send.await_args.args[0]
        assert message.to == "new@example.com"
        assert message.subject == "Invitation to join Acme Corp"
        assert message.text.startswith(
            "You've been invited to join Acme Corp as a member. Accept here: "
            f"{settings.frontend_url}/accept-invite?token=invite-token"
        )

    async def test_completed_row_not_reprocessed(self, dispatcher, email_sender,
                                                 session_factory):
        await _enqueue_verification(session_factory)
        await dispatcher.run_once()
        summary = await dispatcher.run_once(now=utcnow() + timedelta(days=1))
        assert summary.claimed == 0
        assert email_sender.send.await_count == 1

    async def test_claims_in_creation_order(self, session_factory, email_sender, settings):
        now = utcnow()
        newest = await _enqueue_verification(session_factory, "c@example.com", now)
        oldest = await _enqueue_verification(session_factory, "a@example.com",
                                             now - timedelta(minutes=2))
        middle = await _enqueue_verification(session_factory, "b@example.com",
                                             now - timedelta(minutes=1))
        dispatcher = OutboxDispatcher(
            session_factory, email_sender, settings.model_copy(update={"outbox_batch_size": 2})
        )

        events = await dispatcher.claim_batch()
        assert [e.id for e in events] == [oldest, middle]
        assert newest not in {e.id for e in events}

    async def test_disabled(self, session_factory, email_sender, settings):
        await _enqueue_verification(session_factory)
        dispatcher = OutboxDispatcher(
            session_factory, email_sender, settings.model_copy(update={"outbox_enabled": False})
        )
        summary = await dispatcher.run_once()
        assert summary.claimed == 0
        email_sender.send.assert_not_awaited()

    async def test_unknown_type_fails_without_retry(self, dispatcher, email_sender,
                                                    session_factory):
        async with session_factory.begin() as db:
            event = AuthOutbox(type="auth.something_else", payload={})
            db.add(event)

        summary = await dispatcher.run_once()

        assert summary.failed == 1
        stored = await _get(session_factory, event.id)
        assert stored.status == OutboxStatus.FAILED.value
        assert "Unknown outbox event type" in stored.last_error
        assert stored.attempts == MAX_ATTEMPTS
        assert stored.next_attempt_at is None
        email_sender.send.assert_not_awaited()

    async def test_unknown_type_stays_failed_after_earlier_retry(self, dispatcher,
                                                                 session_factory):
        now = utcnow()
        async with session_factory.begin() as db:
            event = AuthOutbox(type="auth.something_else", payload={}, attempts=1,
                               next_attempt_at=now - timedelta(minutes=1))
            db.add(event)

        assert (await dispatcher.run_once(now=now)).failed == 1
        summary = await dispatcher.run_once(now=now + timedelta(days=1))

        assert summary.claimed == 0
        stored = await _get(session_factory, event.id)
        assert stored.status == OutboxStatus.FAILED.value
        assert stored.next_attempt_at is None


class TestConcurrentDispatchers:
    async def test_each_row_processed_once(self, session_factory, email_sender, settings):
        for i in range(6):
            await _enqueue_verification(session_factory, f"user{i}@example.com")
        small_batches = settings.model_copy(update={"outbox_batch_size": 2})
        first = OutboxDispatcher(session_factory, email_sender, small_batches)
        second = OutboxDispatcher(session_factory, email_sender, small_batches)

        total = 0
        while True:
            summaries = await asyncio.gather(first.run_once(), second.run_once())
            claimed = sum(s.claimed for s in summaries)
            if not claimed:
                break
            total += claimed

        assert total == 6
        recipients = [call.args[0].to for call in email_sender.send.await_args_list]
        assert sorted(recipients) == sorted(f"user{i}@example.com" for i in range(6))

        async with session_factory() as db:
            statuses = (await db.execute(select(AuthOutbox.status))).scalars().all()
        assert set(statuses) == {OutboxStatus.COMPLETED.value}

    async def test_overlapping_tick_skipped(self, dispatcher, session_factory, email_sender):
        await _enqueue_verification(session_factory)
        dispatcher.is_processing = True
        summary = await dispatcher.run_once()
        assert summary.claimed == 0
        email_sender.send.assert_not_awaited()


class TestRetries:
    async def test_failure_schedules_retry(self, dispatcher, email_sender, session_factory):
        email_sender.send.side_effect = RuntimeError("provider unavailable")
        event_id = await _enqueue_verification(session_factory)

        before = utcnow()
        summary = await dispatcher.run_once()

        assert summary.retried == 1
        event = await _get(session_factory, event_id)
        assert event.status == OutboxStatus.PENDING.value
        assert event.attempts == 1
        assert event.last_error == "RuntimeError: provider unavailable"
        assert event.next_attempt_at >= before + timedelta(minutes=5)

        # not due yet
        assert (await dispatcher.run_once()).claimed == 0

    async def test_terminal_failure_after_max_attempts(self, dispatcher, email_sender,
                                                       session_factory):
        email_sender.send.side_effect = RuntimeError("provider unavailable")
        event_id = await _enqueue_verification(session_factory)

        await dispatcher.run_once()
        await dispatcher.run_once(now=utcnow() + timedelta(hours=1))
        summary = await dispatcher.run_once(now=utcnow() + timedelta(hours=1))

        assert summary.failed == 1
        event = await _get(session_factory, event_id)
        assert event.status == OutboxStatus.FAILED.value
        assert event.attempts == MAX_ATTEMPTS
        assert event.next_attempt_at is None
        assert "provider unavailable" in event.last_error

        summary = await dispatcher.run_once(now=utcnow() + timedelta(days=30))
        assert summary.claimed == 0
        assert email_sender.send.await_count == MAX_ATTEMPTS

    async def test_requeue_failed(self, dispatcher, email_sender, session_factory):
        email_sender.send.side_effect = RuntimeError("provider unavailable")
        event_id = await _enqueue_verification(session_factory)
        for _ in range(MAX_ATTEMPTS):
            await dispatcher.run_once(now=utcnow() + timedelta(hours=1))

        email_sender.send.side_effect = None
        assert await dispatcher.requeue(event_id)
        summary = await dispatcher.run_once()

        assert summary.completed == 1
        event = await _get(session_factory, event_id)
        assert event.status == OutboxStatus.COMPLETED.value

    async def test_requeue_only_failed(self, dispatcher, session_factory):
        event_id = await _enqueue_verification(session_factory)
        assert not await dispatcher.requeue(event_id)


class TestStaleClaims:
    async def test_fresh_claim_not_reclaimed(self, dispatcher, session_factory, settings):
        await _enqueue_verification(session_factory)
        t0 = utcnow()
        assert len(await dispatcher.claim_batch(now=t0)) == 1
        assert await dispatcher.claim_batch(now=t0 + timedelta(minutes=5)) == []

    async def test_stale_claim_recovered_and_old_claim_fenced(self, session_factory,
                                                              email_sender, settings):
        await _enqueue_verification(session_factory)
        crashed = OutboxDispatcher(session_factory, email_sender, settings)
        rescuer = OutboxDispatcher(session_factory, email_sender, settings)

        t0 = utcnow()
        [stale] = await crashed.claim_batch(now=t0)
        later = t0 + timedelta(seconds=settings.outbox_claim_timeout_seconds + 1)
        [reclaimed] = await rescuer.claim_batch(now=later)
        assert reclaimed.id == stale.id
        assert reclaimed.claimed_at == later

        assert await crashed.process_event(stale) == "skipped"
        assert await rescuer.process_event(reclaimed) == "completed"

        event = await _get(session_factory, stale.id)
        assert event.status == OutboxStatus.COMPLETED.value


class TestWorkerTask:
    async def test_process_outbox_runs_one_batch(self, dispatcher, session_factory, email_sender):
        from tenantgate.tasks.outbox import WorkerSettings, process_outbox

        await _enqueue_verification(session_factory)
        assert await process_outbox({"dispatcher": dispatcher}) == 1
        email_sender.send.assert_awaited_once()
        assert process_outbox in WorkerSettings.functions
