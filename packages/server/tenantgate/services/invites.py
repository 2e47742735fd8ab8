"""
Invite service: issue, preview, accept and revoke organization invitations.

Acceptance re-reads the invite with a row lock filtered to active invites
inside the accepting transaction; that read is the only check trusted, so two
concurrent accepts of one token yield exactly one new user.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from tenantgate.core.auth import MAX_PASSWORD_BYTES, hash_password
from tenantgate.core.config import Settings
from tenantgate.core.constraints import violated_constraint
from tenantgate.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from tenantgate.core.logging import mask_email
from tenantgate.core.security import TokenHasher
from tenantgate.models.base import utcnow
from tenantgate.models.org_invite import OrgInvite, OrgInviteWorkspaceAssignment
from tenantgate.models.organization import Organization, Workspace, WorkspaceMember
from tenantgate.models.user import User
from tenantgate.models.user_org import UserOrganization
from tenantgate.services.audit import record_audit
from tenantgate.services.email import invite_link
from tenantgate.services.outbox import enqueue_event
from tenantgate.services.registration import MIN_PASSWORD_LENGTH, split_full_name

from tenantgate_shared.schemas.invites import (
    INVITE_ROLE_TO_ORG_ROLE,
    InviteRole,
    WorkspaceAccessLevel,
    WorkspaceAssignment,
    workspace_role_for,
)
from tenantgate_shared.schemas.organizations import ADMIN_ORG_ROLES, OrgRole
from tenantgate_shared.schemas.outbox import InviteCreatedPayload, OutboxEventType

log = structlog.get_logger()

INVITE_NOT_FOUND = "Invite not found or invalid"
USER_EXISTS_MESSAGE = "A user with this email already exists in this organization"


@dataclass(frozen=True)
class InviteContext:
    """The acting user: who is inviting, into which organization, with what role."""

    organization_id: uuid.UUID
    user_id: uuid.UUID
    role: str


@dataclass(frozen=True)
class CreatedInvite:
    id: uuid.UUID
    email: str
    role: str
    expires_at: datetime
    invite_link: str
    workspace_assignments: tuple[WorkspaceAssignment, ...] = ()


@dataclass(frozen=True)
class InviteSummary:
    id: uuid.UUID
    email: str
    role: str
    expires_at: datetime


@dataclass(frozen=True)
class InvitePreview:
    email: str
    role: str
    org_name: str
    expires_at: datetime


@dataclass(frozen=True)
class AcceptedInvite:
    user_id: uuid.UUID
    organization_id: uuid.UUID
    role: str
    workspace_ids: tuple[uuid.UUID, ...] = ()


def _active(now: datetime):
    return (
        OrgInvite.accepted_at.is_(None),
        OrgInvite.revoked_at.is_(None),
        OrgInvite.expires_at > now,
    )


def _require_admin(ctx: InviteContext) -> None:
    if ctx.role not in ADMIN_ORG_ROLES:
        raise ForbiddenError("Only organization admins can manage invites")


def _parse_invite_role(role: str) -> InviteRole:
    if role == OrgRole.OWNER.value:
        raise ForbiddenError("The owner role cannot be granted by invite", code="INVALID_ROLE")
    try:
        return InviteRole(role)
    except ValueError:
        raise ValidationFailedError(
            "Role must be one of: admin, member, viewer", code="INVALID_ROLE"
        )


async def _check_workspaces(
    db: AsyncSession,
    organization_id: uuid.UUID,
    assignments: Sequence[WorkspaceAssignment],
) -> None:
    requested = {a.workspace_id for a in assignments}
    if not requested:
        return
    result = await db.execute(
        select(Workspace.id).where(
            Workspace.id.in_(requested),
            Workspace.organization_id == organization_id,
        )
    )
    if requested - set(result.scalars().all()):
        raise ValidationFailedError(
            "Workspace does not belong to this organization", code="INVALID_WORKSPACE"
        )


async def _stored_assignments(
    db: AsyncSession, invite_id: uuid.UUID
) -> list[OrgInviteWorkspaceAssignment]:
    result = await db.execute(
        select(OrgInviteWorkspaceAssignment)
        .where(OrgInviteWorkspaceAssignment.org_invite_id == invite_id)
        .order_by(OrgInviteWorkspaceAssignment.created_at, OrgInviteWorkspaceAssignment.id)
    )
    return list(result.scalars().all())


class InviteService:
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
    def invite_ttl(self) -> timedelta:
        return timedelta(days=self._settings.invite_expiry_days)

    async def create_invite(
        self,
        ctx: InviteContext,
        email: str,
        role: str,
        message: Optional[str] = None,
        workspace_assignments: Optional[Sequence[WorkspaceAssignment]] = None,
        now: Optional[datetime] = None,
    ) -> CreatedInvite:
        """Invite ``email`` into the acting user's organization.

        A still-active invite for the same address is updated in place with a
        new token, role and expiry instead of creating a second row.

        ``workspace_assignments`` are stored on the invite and applied when it
        is accepted. On a re-invite, ``None`` keeps the stored assignments and
        a list (even an empty one) replaces them.
        """
        _require_admin(ctx)
        invite_role = _parse_invite_role(role)
        normalized = email.strip().lower()
        if not normalized or "@" not in normalized:
            raise ValidationFailedError("A valid email address is required", code="INVALID_EMAIL")
        message = message.strip() if message and message.strip() else None
        if workspace_assignments is not None:
            # the last entry for a workspace wins
            workspace_assignments = list(
                {a.workspace_id: a for a in workspace_assignments}.values()
            )

        now = now or utcnow()
        raw = self._hasher.generate_raw_token()
        token_hash = self._hasher.hash_token(raw)
        expires_at = now + self.invite_ttl

        async with self._sessions.begin() as db:
            # Serializes invite creation per organization
            org = await db.get(Organization, ctx.organization_id, with_for_update=True)
            if org is None:
                raise NotFoundError("Organization not found")

            existing_user = await db.execute(
                select(User.id).where(
                    User.organization_id == org.id,
                    User.email == normalized,
                )
            )
            if existing_user.scalar_one_or_none() is not None:
                raise ConflictError(USER_EXISTS_MESSAGE, code="ORG_USER_ALREADY_EXISTS")

            if workspace_assignments:
                await _check_workspaces(db, org.id, workspace_assignments)

            result = await db.execute(
                select(OrgInvite)
                .where(
                    OrgInvite.organization_id == org.id,
                    OrgInvite.email == normalized,
                    *_active(now),
                )
                .order_by(OrgInvite.created_at.desc())
                .with_for_update()
            )
            invite = result.scalars().first()
            reinvite = invite is not None
            if reinvite:
                invite.role = invite_role.value
                invite.token_hash = token_hash
                invite.expires_at = expires_at
                invite.created_by = ctx.user_id
                invite.message = message
                invite.updated_at = now
            else:
                invite = OrgInvite(
                    organization_id=org.id,
                    email=normalized,
                    role=invite_role.value,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    created_by=ctx.user_id,
                    message=message,
                    created_at=now,
                    updated_at=now,
                )
                db.add(invite)
            await db.flush()

            if workspace_assignments is not None:
                if reinvite:
                    await db.execute(
                        delete(OrgInviteWorkspaceAssignment)
                        .where(OrgInviteWorkspaceAssignment.org_invite_id == invite.id)
                    )
                for assignment in workspace_assignments:
                    db.add(OrgInviteWorkspaceAssignment(
                        org_invite_id=invite.id,
                        workspace_id=assignment.workspace_id,
                        access_level=assignment.access_level.value,
                        created_at=now,
                        updated_at=now,
                    ))
            stored = await _stored_assignments(db, invite.id)

            enqueue_event(
                db,
                OutboxEventType.INVITE_CREATED,
                InviteCreatedPayload(
                    email=normalized,
                    token=raw,
                    org_name=org.name,
                    role=invite_role.value,
                    message=message,
                    expires_at=expires_at.isoformat(),
                ),
                now,
            )
            record_audit(
                db,
                organization_id=org.id,
                actor_id=ctx.user_id,
                entity_type="invite",
                entity_id=invite.id,
                action="invite_resent" if reinvite else "invite_created",
                now=now,
                payload={"role": invite_role.value, "workspaces": len(stored)},
            )

        log.info(
            "invite.created",
            invite_id=str(invite.id),
            org_id=str(ctx.organization_id),
            email=mask_email(normalized),
            role=invite_role.value,
            reinvite=reinvite,
        )
        return CreatedInvite(
            id=invite.id,
            email=normalized,
            role=invite_role.value,
            expires_at=expires_at,
            invite_link=invite_link(self._settings.frontend_url, raw),
            workspace_assignments=tuple(
                WorkspaceAssignment(
                    workspace_id=a.workspace_id,
                    access_level=WorkspaceAccessLevel(a.access_level),
                )
                for a in stored
            ),
        )

    async def validate_invite_token(self, raw: str, now: Optional[datetime] = None) -> InvitePreview:
        """Preview an active invite; every inactive state is the same not-found."""
        if not raw:
            raise NotFoundError(INVITE_NOT_FOUND, code="ORG_INVITE_NOT_FOUND")
        now = now or utcnow()
        async with self._sessions() as db:
            result = await db.execute(
                select(OrgInvite, Organization.name)
                .join(Organization, Organization.id == OrgInvite.organization_id)
                .where(OrgInvite.token_hash == self._hasher.hash_token(raw), *_active(now))
            )
            row = result.first()
        if row is None:
            raise NotFoundError(INVITE_NOT_FOUND, code="ORG_INVITE_NOT_FOUND")

        invite, org_name = row
        return InvitePreview(
            email=invite.email,
            role=invite.role,
            org_name=org_name,
            expires_at=invite.expires_at,
        )

    async def accept_invite(
        self,
        raw: str,
        full_name: str,
        password: str,
        now: Optional[datetime] = None,
    ) -> AcceptedInvite:
        """Create the invited user and membership exactly once per invite."""
        if not raw:
            raise NotFoundError(INVITE_NOT_FOUND, code="ORG_INVITE_NOT_FOUND")
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationFailedError("Full name is required", code="INVALID_FULL_NAME")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationFailedError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                code="INVALID_PASSWORD",
            )
        if len(password.encode()) > MAX_PASSWORD_BYTES:
            raise ValidationFailedError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
                code="INVALID_PASSWORD",
            )

        token_hash = self._hasher.hash_token(raw)
        password_hash = hash_password(password)
        now = now or utcnow()

        try:
            async with self._sessions.begin() as db:
                accepted = await self._accept_locked(db, token_hash, full_name, password_hash, now)
        except IntegrityError as exc:
            # Another org already holds this email
            if violated_constraint(exc) == "uq_users_email":
                raise ConflictError(USER_EXISTS_MESSAGE, code="ORG_USER_ALREADY_EXISTS") from exc
            raise

        log.info(
            "invite.accepted",
            user_id=str(accepted.user_id),
            org_id=str(accepted.organization_id),
            role=accepted.role,
            workspaces=len(accepted.workspace_ids),
        )
        return accepted

    async def _accept_locked(
        self,
        db: AsyncSession,
        token_hash: str,
        full_name: str,
        password_hash: str,
        now: datetime,
    ) -> AcceptedInvite:
        result = await db.execute(
            select(OrgInvite)
            .where(OrgInvite.token_hash == token_hash, *_active(now))
            .with_for_update()
        )
        invite = result.scalar_one_or_none()
        if invite is None:
            raise NotFoundError(INVITE_NOT_FOUND, code="ORG_INVITE_NOT_FOUND")

        existing = await db.execute(
            select(User.id).where(
                User.organization_id == invite.organization_id,
                User.email == invite.email,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(USER_EXISTS_MESSAGE, code="ORG_USER_ALREADY_EXISTS")

        if invite.role == OrgRole.OWNER.value:
            raise ForbiddenError("The owner role cannot be granted by invite", code="INVALID_ROLE")
        invite_role = InviteRole(invite.role)
        org_role = INVITE_ROLE_TO_ORG_ROLE[invite_role].value

        first_name, last_name = split_full_name(full_name)
        user = User(
            organization_id=invite.organization_id,
            email=invite.email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=org_role,
            is_active=True,
            # the invite link proved control of the mailbox
            is_email_verified=True,
            email_verified_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        await db.flush()

        db.add(UserOrganization(
            user_id=user.id,
            organization_id=invite.organization_id,
            role=org_role,
            joined_at=now,
            created_at=now,
            updated_at=now,
        ))

        # workspaces removed or moved since the invite was sent are skipped
        result = await db.execute(
            select(OrgInviteWorkspaceAssignment)
            .join(Workspace, Workspace.id == OrgInviteWorkspaceAssignment.workspace_id)
            .where(
                OrgInviteWorkspaceAssignment.org_invite_id == invite.id,
                Workspace.organization_id == invite.organization_id,
            )
        )
        workspace_ids = []
        for assignment in result.scalars().all():
            role = workspace_role_for(invite_role, WorkspaceAccessLevel(assignment.access_level))
            db.add(WorkspaceMember(
                workspace_id=assignment.workspace_id,
                user_id=user.id,
                role=role.value,
                created_at=now,
                updated_at=now,
            ))
            workspace_ids.append(assignment.workspace_id)

        invite.accepted_at = now
        invite.updated_at = now
        record_audit(
            db,
            organization_id=invite.organization_id,
            actor_id=user.id,
            entity_type="invite",
            entity_id=invite.id,
            action="invite_accepted",
            now=now,
            payload={"role": org_role, "workspaces": len(workspace_ids)},
        )
        await db.flush()
        return AcceptedInvite(
            user_id=user.id,
            organization_id=invite.organization_id,
            role=org_role,
            workspace_ids=tuple(workspace_ids),
        )

    async def revoke_invite(self, ctx: InviteContext, invite_id: uuid.UUID,
                            now: Optional[datetime] = None) -> None:
        _require_admin(ctx)
        now = now or utcnow()
        async with self._sessions.begin() as db:
            result = await db.execute(
                select(OrgInvite)
                .where(
                    OrgInvite.id == invite_id,
                    OrgInvite.organization_id == ctx.organization_id,
                    *_active(now),
                )
                .with_for_update()
            )
            invite = result.scalar_one_or_none()
            if invite is None:
                raise NotFoundError(INVITE_NOT_FOUND, code="ORG_INVITE_NOT_FOUND")
            invite.revoked_at = now
            invite.updated_at = now
            record_audit(
                db,
                organization_id=ctx.organization_id,
                actor_id=ctx.user_id,
                entity_type="invite",
                entity_id=invite.id,
                action="invite_revoked",
                now=now,
            )
        log.info("invite.revoked", invite_id=str(invite_id), org_id=str(ctx.organization_id))

    async def list_pending_invites(self, ctx: InviteContext,
                                   now: Optional[datetime] = None) -> list[InviteSummary]:
        _require_admin(ctx)
        now = now or utcnow()
        async with self._sessions() as db:
            result = await db.execute(
                select(OrgInvite)
                .where(OrgInvite.organization_id == ctx.organization_id, *_active(now))
                .order_by(OrgInvite.created_at.desc())
            )
            invites = result.scalars().all()
        return [
            InviteSummary(id=i.id, email=i.email, role=i.role, expires_at=i.expires_at)
            for i in invites
        ]
