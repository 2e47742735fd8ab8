"""
Tests for self-serve registration.

Covers:
- Anti-enumeration: repeated registration is indistinguishable
- Organization, owner membership and default workspace creation
- Slug assignment, explicit slug conflicts
- Input validation
- Concurrent registrations racing on the same email
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func
from sqlmodel import select

from tenantgate.core.errors import ConflictError, ValidationFailedError
from tenantgate.models.audit_event import AuditEvent
from tenantgate.models.auth_outbox import AuthOutbox
from tenantgate.models.email_verification_token import EmailVerificationToken
from tenantgate.models.organization import Organization, Workspace, WorkspaceMember
from tenantgate.models.user import User
from tenantgate.models.user_org import UserOrganization
from tenantgate.services.email_verification import NEUTRAL_MESSAGE
from tenantgate.services.registration import (
    RegistrationInput,
    RegistrationService,
    SLUG_TAKEN_MESSAGE,
    split_full_name,
)

from tenantgate_shared.schemas.organizations import OrgRole, OrgStatus, UserRole, WorkspaceRole
from tenantgate_shared.schemas.outbox import OutboxEventType, OutboxStatus


def _input(**overrides) -> RegistrationInput:
    data = dict(
        email="Jane.Doe@Example.com",
        password="s3cure-password",
        full_name="Jane Q Doe",
        org_name="Acme Corp",
        ip="203.0.113.5",
        user_agent="pytest",
    )
    data.update(overrides)
    return RegistrationInput(**data)


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


class TestSplitFullName:
    def test_first_and_rest(self):
        assert split_full_name("Jane Q Doe") == ("Jane", "Q Doe")

    def test_single(self):
        assert split_full_name("Cher") == ("Cher", "")

    def test_blank(self):
        assert split_full_name("   ") == ("", "")


class TestRegisterSelfServe:
    async def test_creates_org_user_membership_workspace(self, registration_service,
                                                         session_factory):
        result = await registration_service.register_self_serve(_input())
        assert result.message == NEUTRAL_MESSAGE

        async with session_factory() as db:
            user = (await db.execute(select(User))).scalar_one()
            org = await db.get(Organization, user.organization_id)
            membership = (await db.execute(select(UserOrganization))).scalar_one()
            workspace = (await db.execute(select(Workspace))).scalar_one()
            member = (await db.execute(select(WorkspaceMember))).scalar_one()

        assert user.email == "jane.doe@example.com"
        assert (user.first_name, user.last_name) == ("Jane", "Q Doe")
        assert user.role == UserRole.ADMIN.value
        assert not user.is_email_verified
        assert user.password_hash != "s3cure-password"

        assert org.slug == "acme-corp"
        assert org.status == OrgStatus.TRIAL.value
        assert org.settings["security"]["require_email_verification"] is True

        assert membership.role == OrgRole.OWNER.value
        assert membership.user_id == user.id

        assert workspace.organization_id == org.id
        assert workspace.slug == "general"
        assert workspace.owner_id == user.id
        assert member.role == WorkspaceRole.OWNER.value

    async def test_enqueues_verification_email(self, registration_service, session_factory):
        await registration_service.register_self_serve(_input())

        async with session_factory() as db:
            event = (await db.execute(select(AuthOutbox))).scalar_one()
            token = (await db.execute(select(EmailVerificationToken))).scalar_one()

        assert event.type == OutboxEventType.EMAIL_VERIFICATION_REQUESTED.value
        assert event.status == OutboxStatus.PENDING.value
        assert event.payload["email"] == "jane.doe@example.com"
        assert event.payload["fullName"] == "Jane Q Doe"
        assert token.used_at is None
        assert token.ip == "203.0.113.5"
        # only the hash is stored on the token row
        assert token.token_hash != event.payload["token"]

    async def test_records_audit_events(self, registration_service, session_factory):
        await registration_service.register_self_serve(_input())
        async with session_factory() as db:
            actions = set((await db.execute(select(AuditEvent.action))).scalars().all())
        assert {"org_created", "user_registered"} <= actions

    async def test_same_email_twice_is_neutral(self, registration_service, session_factory):
        first = await registration_service.register_self_serve(_input())
        second = await registration_service.register_self_serve(
            _input(email="  jane.doe@EXAMPLE.com ", org_name="Other Org")
        )

        assert first.message == second.message == NEUTRAL_MESSAGE
        assert await _count(session_factory, User) == 1
        assert await _count(session_factory, Organization) == 1
        assert await _count(session_factory, AuthOutbox) == 1

    async def test_concurrent_same_email_creates_one_user(self, registration_service,
                                                          session_factory):
        results = await asyncio.gather(
            registration_service.register_self_serve(_input(org_name="First Org")),
            registration_service.register_self_serve(_input(org_name="Second Org")),
        )
        assert [r.message for r in results] == [NEUTRAL_MESSAGE, NEUTRAL_MESSAGE]
        assert await _count(session_factory, User) == 1

    async def test_derived_slug_collision_gets_suffix(self, registration_service,
                                                      session_factory):
        await registration_service.register_self_serve(_input(email="a@example.com"))
        await registration_service.register_self_serve(_input(email="b@example.com"))
        await registration_service.register_self_serve(_input(email="c@example.com"))

        async with session_factory() as db:
            slugs = set((await db.execute(select(Organization.slug))).scalars().all())
        assert slugs == {"acme-corp", "acme-corp-2", "acme-corp-3"}

    async def test_explicit_slug(self, registration_service, session_factory):
        await registration_service.register_self_serve(_input(org_slug="acme-hq"))
        async with session_factory() as db:
            org = (await db.execute(select(Organization))).scalar_one()
        assert org.slug == "acme-hq"

    async def test_explicit_slug_conflict(self, registration_service, session_factory):
        await registration_service.register_self_serve(_input(org_slug="acme-hq"))

        with pytest.raises(ConflictError) as exc_info:
            await registration_service.register_self_serve(
                _input(email="other@example.com", org_slug="acme-hq")
            )
        assert exc_info.value.code == "ORG_SLUG_CONFLICT"
        assert exc_info.value.message == SLUG_TAKEN_MESSAGE
        assert await _count(session_factory, User) == 1

    async def test_reserved_name_is_padded(self, registration_service, session_factory):
        await registration_service.register_self_serve(_input(org_name="Admin"))
        async with session_factory() as db:
            org = (await db.execute(select(Organization))).scalar_one()
        assert org.slug == "admin-org"

    async def test_name_without_alphanumerics_falls_back(self, registration_service,
                                                         session_factory):
        await registration_service.register_self_serve(_input(org_name="!!!"))
        async with session_factory() as db:
            org = (await db.execute(select(Organization))).scalar_one()
        assert org.slug == "organization"

    async def test_skip_email_verification(self, session_factory, verification_service,
                                           settings):
        service = RegistrationService(
            session_factory,
            verification_service,
            settings.model_copy(update={"skip_email_verification": True}),
        )
        await service.register_self_serve(_input())

        async with session_factory() as db:
            user = (await db.execute(select(User))).scalar_one()
        assert user.is_email_verified
        assert user.email_verified_at is not None
        assert await _count(session_factory, AuthOutbox) == 0
        assert await _count(session_factory, EmailVerificationToken) == 0


class TestValidation:
    @pytest.mark.parametrize(
        "overrides,code",
        [
            ({"email": "not-an-email"}, "INVALID_EMAIL"),
            ({"password": "short"}, "INVALID_PASSWORD"),
            ({"password": "x" * 73}, "INVALID_PASSWORD"),
            ({"org_name": "A"}, "INVALID_ORG_NAME"),
            ({"org_name": "x" * 81}, "INVALID_ORG_NAME"),
            ({"full_name": "   "}, "INVALID_FULL_NAME"),
            ({"org_slug": "Bad Slug"}, "INVALID_SLUG"),
            ({"org_slug": "admin"}, "INVALID_SLUG"),
        ],
    )
    async def test_rejected(self, registration_service, session_factory, overrides, code):
        with pytest.raises(ValidationFailedError) as exc_info:
            await registration_service.register_self_serve(_input(**overrides))
        assert exc_info.value.code == code
        assert await _count(session_factory, User) == 0
