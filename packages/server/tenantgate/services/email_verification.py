"""
Email verification service: single-use, hash-indexed verification tokens.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from tenantgate.core.config import Settings
from tenantgate.core.errors import ValidationFailedError
from tenantgate.core.logging import mask_email
from tenantgate.core.redis import RateLimiter
from tenantgate.core.security import TokenHasher
from tenantgate.models.base import utcnow
from tenantgate.models.email_verification_token import EmailVerificationToken
from tenantgate.models.user import User
from tenantgate.services.audit import record_audit
from tenantgate.services.outbox import enqueue_event

from tenantgate_shared.schemas.outbox import EmailVerificationRequestedPayload, OutboxEventType

log = structlog.get_logger()

NEUTRAL_MESSAGE = "If an account with this email exists, you will receive a verification email."
INVALID_TOKEN_MESSAGE = "Invalid or expired verification token"


@dataclass(frozen=True)
class VerificationResult:
    user_id: uuid.UUID
    organization_id: uuid.UUID


def is_token_usable(token: EmailVerificationToken, now: datetime) -> bool:
    return token.used_at is None and token.expires_at > now


class EmailVerificationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hasher: TokenHasher,
        settings: Settings,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self._sessions = session_factory
        self._hasher = hasher
        self._settings = settings
        self._rate_limiter = rate_limiter

    async def create_token(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        email: str,
        full_name: str,
        now: datetime,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """Issue a fresh token inside the caller's transaction and enqueue its email.

        Any earlier unused token for the user stops working. Returns the raw
        token; only its hash is stored.
        """
        await db.execute(
            update(EmailVerificationToken)
            .where(
                EmailVerificationToken.user_id == user_id,
                EmailVerificationToken.used_at.is_(None),
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )

        raw = self._hasher.generate_raw_token()
        db.add(
            EmailVerificationToken(
                user_id=user_id,
                token_hash=self._hasher.hash_token(raw),
                expires_at=now + timedelta(hours=self._settings.verification_token_hours),
                ip=ip[:64] if ip else None,
                user_agent=user_agent[:512] if user_agent else None,
                created_at=now,
            )
        )
        enqueue_event(
            db,
            OutboxEventType.EMAIL_VERIFICATION_REQUESTED,
            EmailVerificationRequestedPayload(
                user_id=str(user_id), email=email, token=raw, full_name=full_name
            ),
            now,
        )
        log.info("email_verification.token_created", user_id=str(user_id))
        return raw

    async def verify_token(self, raw: str, now: Optional[datetime] = None) -> VerificationResult:
        """Consume a token and mark its user verified, atomically."""
        if not raw:
            raise ValidationFailedError("Verification token is required", code="TOKEN_REQUIRED")
        now = now or utcnow()
        token_hash = self._hasher.hash_token(raw)

        async with self._sessions.begin() as db:
            result = await db.execute(
                select(EmailVerificationToken)
                .where(
                    EmailVerificationToken.token_hash == token_hash,
                    EmailVerificationToken.used_at.is_(None),
                )
                .with_for_update()
            )
            token = result.scalar_one_or_none()
            if token is None or not is_token_usable(token, now):
                log.info("email_verification.rejected",
                         reason="not_found" if token is None else "expired")
                raise ValidationFailedError(INVALID_TOKEN_MESSAGE, code="INVALID_TOKEN")

            user = await db.get(User, token.user_id, with_for_update=True)
            if user is None:
                raise ValidationFailedError(INVALID_TOKEN_MESSAGE, code="INVALID_TOKEN")

            token.used_at = now
            user.is_email_verified = True
            user.email_verified_at = now
            user.updated_at = now
            record_audit(
                db,
                organization_id=user.organization_id,
                actor_id=user.id,
                entity_type="user",
                entity_id=user.id,
                action="email_verified",
                now=now,
            )

        log.info("email_verification.verified", user_id=str(user.id))
        return VerificationResult(user_id=user.id, organization_id=user.organization_id)

    async def resend_verification(
        self,
        email: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Issue a new verification email if one is warranted.

        Returns the neutral message in every case.
        """
        now = now or utcnow()
        normalized = email.strip().lower()

        if self._rate_limiter is not None and not await self._rate_limiter.hit(
            f"resend-verification:{normalized}"
        ):
            log.warning("email_verification.resend_throttled", email=mask_email(normalized))
            return NEUTRAL_MESSAGE

        async with self._sessions.begin() as db:
            result = await db.execute(select(User).where(User.email == normalized))
            user = result.scalar_one_or_none()
            if user is None or user.is_email_verified or not user.is_active:
                return NEUTRAL_MESSAGE

            await self.create_token(
                db,
                user_id=user.id,
                email=user.email,
                full_name=user.full_name,
                now=now,
                ip=ip,
                user_agent=user_agent,
            )
            record_audit(
                db,
                organization_id=user.organization_id,
                actor_id=user.id,
                entity_type="user",
                entity_id=user.id,
                action="verification_resent",
                now=now,
                payload={"ip": ip} if ip else None,
            )

        log.info("email_verification.resent", user_id=str(user.id))
        return NEUTRAL_MESSAGE
