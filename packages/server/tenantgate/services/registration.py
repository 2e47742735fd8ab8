"""
Registration service: self-serve sign-up.

Creates the organization, the admin user, the owner membership, a default
workspace and the first email verification token (plus its outbox row) in one
transaction. The response never reveals whether the email was already
registered.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from tenantgate.core.auth import MAX_PASSWORD_BYTES, hash_password
from tenantgate.core.config import Settings
from tenantgate.core.constraints import violated_constraint
from tenantgate.core.errors import ConflictError, ValidationFailedError
from tenantgate.core.logging import mask_email
from tenantgate.models.base import utcnow
from tenantgate.models.organization import Organization, Workspace, WorkspaceMember
from tenantgate.models.user import User
from tenantgate.models.user_org import UserOrganization
from tenantgate.services.audit import record_audit
from tenantgate.services.email_verification import NEUTRAL_MESSAGE, EmailVerificationService
from tenantgate.services.slugs import (
    SlugExhaustedError,
    assign_available_slug,
    slugify,
    validate_slug,
)

from tenantgate_shared.schemas.organizations import (
    OrgRole,
    OrgSettings,
    OrgStatus,
    UserRole,
    WorkspaceRole,
)

log = structlog.get_logger()

MIN_PASSWORD_LENGTH = 8
ORG_NAME_MIN_LENGTH = 2
ORG_NAME_MAX_LENGTH = 80
DEFAULT_WORKSPACE_NAME = "General"
DEFAULT_WORKSPACE_SLUG = "general"
FALLBACK_SLUG_BASE = "organization"

SLUG_TAKEN_MESSAGE = "Organization slug already exists. Choose a different slug."
SLUG_EXHAUSTED_MESSAGE = (
    "Could not find an available organization slug. Choose a different slug."
)


@dataclass(frozen=True)
class RegistrationInput:
    email: str
    password: str
    full_name: str
    org_name: str
    org_slug: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class RegistrationResult:
    message: str = NEUTRAL_MESSAGE


class _AlreadyRegistered(Exception):
    """Internal signal: the email exists; roll back and answer neutrally."""


# Unique-constraint name -> outcome when a concurrent registration wins the race.
# Constraints not listed here are re-raised.
_NEUTRAL = "neutral"
_VIOLATION_OUTCOMES: dict[str, str] = {
    "uq_users_email": _NEUTRAL,
    "uq_organizations_slug": SLUG_TAKEN_MESSAGE,
}


def split_full_name(full_name: str) -> tuple[str, str]:
    parts = full_name.strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0], parts[1] if len(parts) > 1 else ""


def _derive_slug_base(org_name: str) -> str:
    """slugify() the name, padding results that are too short or reserved."""
    base = slugify(org_name)
    if validate_slug(base).valid:
        return base
    if not base:
        return FALLBACK_SLUG_BASE
    padded = slugify(f"{base}-org")
    return padded if validate_slug(padded).valid else FALLBACK_SLUG_BASE


class RegistrationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        verification: EmailVerificationService,
        settings: Settings,
    ):
        self._sessions = session_factory
        self._verification = verification
        self._settings = settings

    @staticmethod
    def _validate(data: RegistrationInput) -> tuple[str, str, str]:
        email = data.email.strip().lower()
        if not email or "@" not in email:
            raise ValidationFailedError("A valid email address is required", code="INVALID_EMAIL")
        if len(data.password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                code="INVALID_PASSWORD",
            )
        if len(data.password.encode()) > MAX_PASSWORD_BYTES:
            raise ValidationFailedError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
                code="INVALID_PASSWORD",
            )
        org_name = data.org_name.strip()
        if not ORG_NAME_MIN_LENGTH <= len(org_name) <= ORG_NAME_MAX_LENGTH:
            raise ValidationFailedError(
                f"Organization name must be between {ORG_NAME_MIN_LENGTH} "
                f"and {ORG_NAME_MAX_LENGTH} characters",
                code="INVALID_ORG_NAME",
            )
        full_name = data.full_name.strip()
        if not full_name:
            raise ValidationFailedError("Full name is required", code="INVALID_FULL_NAME")
        if data.org_slug is not None:
            validation = validate_slug(data.org_slug)
            if not validation.valid:
                raise ValidationFailedError(validation.reason or "Invalid slug",
                                            code="INVALID_SLUG")
        return email, org_name, full_name

    async def register_self_serve(self, data: RegistrationInput) -> RegistrationResult:
        email, org_name, full_name = self._validate(data)
        password_hash = hash_password(data.password)
        now = utcnow()

        try:
            async with self._sessions.begin() as db:
                await self._register(db, data, email, org_name, full_name, password_hash, now)
        except _AlreadyRegistered:
            log.info("registration.existing_email", email=mask_email(email))
        except IntegrityError as exc:
            constraint = violated_constraint(exc)
            outcome = _VIOLATION_OUTCOMES.get(constraint or "")
            if outcome is None:
                log.error("registration.integrity_error", constraint=constraint)
                raise
            if outcome != _NEUTRAL:
                log.info("registration.conflict", constraint=constraint)
                raise ConflictError(outcome, code="ORG_SLUG_CONFLICT") from exc
            log.info("registration.existing_email", email=mask_email(email), race=True)

        return RegistrationResult()

    async def _register(
        self,
        db: AsyncSession,
        data: RegistrationInput,
        email: str,
        org_name: str,
        full_name: str,
        password_hash: str,
        now: datetime,
    ) -> None:
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise _AlreadyRegistered()

        slug = await self._resolve_slug(db, data.org_slug, org_name)

        org = Organization(
            name=org_name,
            slug=slug,
            status=OrgStatus.TRIAL.value,
            settings=OrgSettings().model_dump(),
            created_at=now,
            updated_at=now,
        )
        db.add(org)
        await db.flush()

        first_name, last_name = split_full_name(full_name)
        verified = self._settings.skip_email_verification
        user = User(
            organization_id=org.id,
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=UserRole.ADMIN.value,
            is_active=True,
            is_email_verified=verified,
            email_verified_at=now if verified else None,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        await db.flush()

        db.add(UserOrganization(
            user_id=user.id,
            organization_id=org.id,
            role=OrgRole.OWNER.value,
            joined_at=now,
            created_at=now,
            updated_at=now,
        ))
        workspace = Workspace(
            organization_id=org.id,
            name=DEFAULT_WORKSPACE_NAME,
            slug=DEFAULT_WORKSPACE_SLUG,
            owner_id=user.id,
            created_by=user.id,
            created_at=now,
            updated_at=now,
        )
        db.add(workspace)
        await db.flush()
        db.add(WorkspaceMember(
            workspace_id=workspace.id,
            user_id=user.id,
            role=WorkspaceRole.OWNER.value,
            created_at=now,
            updated_at=now,
        ))

        if not verified:
            await self._verification.create_token(
                db,
                user_id=user.id,
                email=email,
                full_name=full_name,
                now=now,
                ip=data.ip,
                user_agent=data.user_agent,
            )

        record_audit(db, organization_id=org.id, actor_id=user.id, entity_type="organization",
                     entity_id=org.id, action="org_created", now=now,
                     payload={"slug": slug})
        record_audit(db, organization_id=org.id, actor_id=user.id, entity_type="user",
                     entity_id=user.id, action="user_registered", now=now,
                     payload={"ip": data.ip} if data.ip else None)
        await db.flush()

        log.info(
            "registration.completed",
            user_id=str(user.id),
            org_id=str(org.id),
            slug=slug,
            email_verification=not verified,
        )

    async def _resolve_slug(self, db: AsyncSession, requested: Optional[str],
                            org_name: str) -> str:
        async def exists(candidate: str) -> bool:
            result = await db.execute(
                select(Organization.id).where(Organization.slug == candidate)
            )
            return result.scalar_one_or_none() is not None

        if requested is not None:
            if await exists(requested):
                raise ConflictError(SLUG_TAKEN_MESSAGE, code="ORG_SLUG_CONFLICT")
            return requested

        try:
            return await assign_available_slug(_derive_slug_base(org_name), exists)
        except SlugExhaustedError as exc:
            raise ConflictError(SLUG_EXHAUSTED_MESSAGE, code="ORG_SLUG_CONFLICT") from exc
