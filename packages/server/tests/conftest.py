"""
Shared fixtures.

Services run against a file-backed SQLite database through aiosqlite. Every
transaction opens with BEGIN IMMEDIATE, so concurrent writers queue on the
database lock the way competing row locks would on PostgreSQL.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from unittest.mock import AsyncMock

import bcrypt
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from tenantgate.core.config import Settings
from tenantgate.core.database import build_session_factory, init_db
from tenantgate.core.security import TokenHasher
from tenantgate.models.base import utcnow
from tenantgate.models.organization import Organization
from tenantgate.models.user import User
from tenantgate.models.user_org import UserOrganization
from tenantgate.services.email_verification import EmailVerificationService
from tenantgate.services.invites import InviteContext, InviteService
from tenantgate.services.outbox import OutboxDispatcher
from tenantgate.services.registration import RegistrationService
from tenantgate.services.sessions import SessionManager

from tenantgate_shared.schemas.organizations import OrgRole, OrgSettings, UserRole

TEST_SECRET = "test-token-hash-secret-0123456789abcdef"
TEST_PASSWORD = "correct-horse-battery"

_real_gensalt = bcrypt.gensalt


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Minimum bcrypt cost so password hashing does not dominate the suite."""
    monkeypatch.setattr(
        bcrypt, "gensalt", lambda rounds=12, prefix=b"2b": _real_gensalt(rounds=4, prefix=prefix)
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tenantgate.db'}",
        token_hash_secret=TEST_SECRET,
        jwt_secret="test-jwt-secret-with-enough-length-for-hs256",
        frontend_url="https://app.example.test",
        log_format="console",
    )


@pytest.fixture
async def engine(settings: Settings):
    engine = create_async_engine(settings.database_url)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def hasher() -> TokenHasher:
    return TokenHasher(TEST_SECRET)


@pytest.fixture
def email_sender() -> AsyncMock:
    sender = AsyncMock()
    sender.send = AsyncMock(return_value=None)
    return sender


@pytest.fixture
def session_manager(session_factory, hasher, settings) -> SessionManager:
    return SessionManager(session_factory, hasher, settings)


@pytest.fixture
def verification_service(session_factory, hasher, settings) -> EmailVerificationService:
    return EmailVerificationService(session_factory, hasher, settings)


@pytest.fixture
def registration_service(session_factory, verification_service, settings) -> RegistrationService:
    return RegistrationService(session_factory, verification_service, settings)


@pytest.fixture
def invite_service(session_factory, hasher, settings) -> InviteService:
    return InviteService(session_factory, hasher, settings)


@pytest.fixture
def dispatcher(session_factory, email_sender, settings) -> OutboxDispatcher:
    return OutboxDispatcher(session_factory, email_sender, settings)


@dataclass
class SeededOrg:
    organization_id: uuid.UUID
    user_id: uuid.UUID
    email: str
    password: str

    def context(self, role: str = OrgRole.OWNER.value) -> InviteContext:
        return InviteContext(
            organization_id=self.organization_id, user_id=self.user_id, role=role
        )


async def seed_org(
    session_factory,
    *,
    name: str = "Acme Corp",
    slug: str = "acme-corp",
    email: str = "owner@acme.example.com",
    password: str = TEST_PASSWORD,
    verified: bool = True,
    org_role: str = OrgRole.OWNER.value,
) -> SeededOrg:
    """Insert an organization with one member directly, bypassing registration."""
    now = utcnow()
    async with session_factory.begin() as db:
        org = Organization(
            name=name, slug=slug, settings=OrgSettings().model_dump(),
            created_at=now, updated_at=now,
        )
        db.add(org)
        await db.flush()
        user = User(
            organization_id=org.id,
            email=email,
            password_hash=bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode(),
            first_name="Olive",
            last_name="Owner",
            role=UserRole.ADMIN.value,
            is_email_verified=verified,
            email_verified_at=now if verified else None,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        await db.flush()
        db.add(UserOrganization(
            user_id=user.id, organization_id=org.id, role=org_role,
            joined_at=now, created_at=now, updated_at=now,
        ))
    return SeededOrg(organization_id=org.id, user_id=user.id, email=email, password=password)


@pytest.fixture
async def acme(session_factory) -> SeededOrg:
    return await seed_org(session_factory)


@pytest.fixture
def make_org(session_factory):
    async def _make(**kwargs) -> SeededOrg:
        return await seed_org(session_factory, **kwargs)
    return _make
