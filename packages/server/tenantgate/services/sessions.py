"""
Session service: refresh-token lifecycle (issue, rotate, revoke, expire).

Only the HMAC of the current refresh token is stored. Rotation swaps the hash
with a conditional UPDATE guarded by the presented hash, so a replayed token
always misses once its successor has been issued.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Optional

import structlog
from sqlalchemy import and_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from tenantgate.core.auth import create_access_token, hash_password, verify_password
from tenantgate.core.config import Settings
from tenantgate.core.errors import ForbiddenError, UnauthorizedError
from tenantgate.core.security import TokenHasher
from tenantgate.models.auth_session import AuthSession
from tenantgate.models.base import utcnow
from tenantgate.models.organization import Organization
from tenantgate.models.user import User
from tenantgate.models.user_org import UserOrganization

from tenantgate_shared.schemas.organizations import OrgSettings

log = structlog.get_logger()

INVALID_REFRESH_TOKEN = "Invalid refresh token"
INVALID_CREDENTIALS = "Invalid email or password"


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    # compared against when the email is unknown so both paths pay for bcrypt
    return hash_password("tenantgate-timing-equalizer")


@dataclass(frozen=True)
class IssuedSession:
    session_id: uuid.UUID
    user_id: uuid.UUID
    organization_id: uuid.UUID
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime


def is_session_active(session: AuthSession, now: datetime) -> bool:
    return (
        session.revoked_at is None
        and session.current_refresh_token_hash is not None
        and session.refresh_expires_at > now
    )


class SessionManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hasher: TokenHasher,
        settings: Settings,
    ):
        self._sessions = session_factory
        self._hasher = hasher
        self._settings = settings

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self._settings.refresh_token_days)

    def _mint(self, session: AuthSession, role: str, refresh_token: str,
              now: datetime) -> IssuedSession:
        access_token, expires_in = create_access_token(
            self._settings,
            user_id=session.user_id,
            organization_id=session.organization_id,
            role=role,
            session_id=session.id,
            now=now,
        )
        return IssuedSession(
            session_id=session.id,
            user_id=session.user_id,
            organization_id=session.organization_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            refresh_expires_at=session.refresh_expires_at,
        )

    async def issue(
        self,
        *,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
        role: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssuedSession:
        """Start a new session lineage and return its first token pair."""
        now = now or utcnow()
        refresh_token = self._hasher.generate_raw_token()
        session = AuthSession(
            organization_id=organization_id,
            user_id=user_id,
            current_refresh_token_hash=self._hasher.hash_token(refresh_token),
            refresh_expires_at=now + self.refresh_ttl,
            created_at=now,
            last_seen_at=now,
            user_agent=user_agent[:512] if user_agent else None,
            ip_address=ip_address[:64] if ip_address else None,
        )
        async with self._sessions.begin() as db:
            db.add(session)

        log.info("session.issued", session_id=str(session.id), user_id=str(user_id))
        return self._mint(session, role, refresh_token, now)

    async def login(
        self,
        email: str,
        password: str,
        *,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> IssuedSession:
        """Check email/password credentials and issue a session."""
        normalized = email.strip().lower()
        async with self._sessions() as db:
            result = await db.execute(
                select(User, UserOrganization.role, Organization.settings)
                .join(
                    UserOrganization,
                    and_(
                        UserOrganization.user_id == User.id,
                        UserOrganization.organization_id == User.organization_id,
                    ),
                )
                .join(Organization, Organization.id == User.organization_id)
                .where(User.email == normalized)
            )
            row = result.first()

        if row is None:
            verify_password(password, _dummy_password_hash())
            log.warning("auth.login_failure", reason="unknown_email")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        user, role, org_settings = row
        if not verify_password(password, user.password_hash):
            log.warning("auth.login_failure", user_id=str(user.id), reason="bad_password")
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not user.is_active:
            log.warning("auth.login_failure", user_id=str(user.id), reason="inactive")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        security = OrgSettings.model_validate(org_settings or {}).security
        if security.require_email_verification and not user.is_email_verified:
            raise ForbiddenError(
                "Please verify your email address before signing in",
                code="EMAIL_NOT_VERIFIED",
            )

        issued = await self.issue(
            user_id=user.id,
            organization_id=user.organization_id,
            role=role,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        log.info("auth.login_success", user_id=str(user.id))
        return issued

    async def refresh(self, presented_token: str, now: Optional[datetime] = None) -> IssuedSession:
        """Rotate the refresh token.

        Unknown, revoked and expired tokens all raise the same UnauthorizedError.
        """
        now = now or utcnow()
        if not presented_token:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        presented_hash = self._hasher.hash_token(presented_token)

        async with self._sessions.begin() as db:
            result = await db.execute(
                select(AuthSession, UserOrganization.role, User.is_active)
                .join(User, User.id == AuthSession.user_id)
                .join(
                    UserOrganization,
                    and_(
                        UserOrganization.user_id == AuthSession.user_id,
                        UserOrganization.organization_id == AuthSession.organization_id,
                        UserOrganization.is_active.is_(True),
                    ),
                )
                .where(AuthSession.current_refresh_token_hash == presented_hash)
            )
            row = result.first()
            if row is None:
                log.info("session.refresh_rejected", reason="not_found")
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)

            session, role, user_active = row
            if not is_session_active(session, now) or not user_active:
                reason = "revoked" if session.revoked_at is not None else (
                    "expired" if session.refresh_expires_at <= now else "user_inactive"
                )
                log.info("session.refresh_rejected", session_id=str(session.id), reason=reason)
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)

            refresh_token = self._hasher.generate_raw_token()
            refresh_expires_at = now + self.refresh_ttl
            rotated = await db.execute(
                update(AuthSession)
                .where(
                    AuthSession.id == session.id,
                    AuthSession.current_refresh_token_hash == presented_hash,
                    AuthSession.revoked_at.is_(None),
                )
                .values(
                    current_refresh_token_hash=self._hasher.hash_token(refresh_token),
                    refresh_expires_at=refresh_expires_at,
                    last_seen_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if rotated.rowcount != 1:
                log.info("session.refresh_rejected", session_id=str(session.id), reason="lost_race")
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        session.refresh_expires_at = refresh_expires_at
        log.info("session.rotated", session_id=str(session.id))
        return self._mint(session, role, refresh_token, now)

    async def revoke(self, session_id: uuid.UUID, reason: str,
                     now: Optional[datetime] = None) -> bool:
        """Revoke a session. Returns False if it was already revoked or unknown."""
        now = now or utcnow()
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(AuthSession)
                .where(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
                .values(revoked_at=now, revoke_reason=reason, current_refresh_token_hash=None)
                .execution_options(synchronize_session=False)
            )
        revoked = result.rowcount == 1
        if revoked:
            log.info("session.revoked", session_id=str(session_id), reason=reason)
        return revoked

    async def logout(self, presented_token: str, now: Optional[datetime] = None) -> None:
        """Revoke the session holding ``presented_token``; unknown tokens are ignored."""
        if not presented_token:
            return
        presented_hash = self._hasher.hash_token(presented_token)
        async with self._sessions() as db:
            result = await db.execute(
                select(AuthSession.id).where(
                    AuthSession.current_refresh_token_hash == presented_hash
                )
            )
            session_id = result.scalar_one_or_none()
        if session_id is not None:
            await self.revoke(session_id, "user_logout", now=now)

    async def revoke_all_for_user(self, user_id: uuid.UUID, reason: str,
                                  now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(AuthSession)
                .where(AuthSession.user_id == user_id, AuthSession.revoked_at.is_(None))
                .values(revoked_at=now, revoke_reason=reason, current_refresh_token_hash=None)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            log.info("session.revoked_all", user_id=str(user_id), count=result.rowcount, reason=reason)
        return result.rowcount
