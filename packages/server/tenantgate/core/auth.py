"""
Credentials for Tenantgate.

- Password hashing (bcrypt)
- Short-lived access tokens (JWT) minted alongside refresh-token sessions
- Bearer authentication and role dependencies for org-scoped endpoints
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tenantgate.core.config import Settings
from tenantgate.core.errors import ForbiddenError, UnauthorizedError
from tenantgate_shared.schemas.organizations import ADMIN_ORG_ROLES

log = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)

# bcrypt silently ignores input past this many bytes
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------

def create_access_token(
    settings: Settings,
    *,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    role: str,
    session_id: uuid.UUID,
    now: datetime | None = None,
) -> tuple[str, int]:
    """Create a signed access token. Returns (token, expires_in_seconds)."""
    now = now or datetime.now(timezone.utc)
    ttl = timedelta(minutes=settings.access_token_minutes)
    payload = {
        "sub": str(user_id),
        "org": str(organization_id),
        "role": role,
        "sid": str(session_id),
        "iat": now,
        "exp": now + ttl,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, int(ttl.total_seconds())


def decode_access_token(settings: Settings, token: str) -> dict:
    """Decode and verify an access token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "org", "role", "sid", "exp"]},
    )


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Identity and org context carried by a verified access token."""

    def __init__(self, user_id: uuid.UUID, organization_id: uuid.UUID, role: str,
                 session_id: uuid.UUID):
        self.user_id = user_id
        self.organization_id = organization_id
        self.role = role
        self.session_id = session_id

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ORG_ROLES


async def get_authenticated_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """Resolve the caller from an ``Authorization: Bearer`` access token."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("Authentication required")

    settings: Settings = request.app.state.settings
    try:
        payload = decode_access_token(settings, credentials.credentials)
        auth = AuthenticatedUser(
            user_id=uuid.UUID(payload["sub"]),
            organization_id=uuid.UUID(payload["org"]),
            role=payload["role"],
            session_id=uuid.UUID(payload["sid"]),
        )
    except (jwt.PyJWTError, ValueError) as exc:
        log.info("auth.access_token_rejected", reason=type(exc).__name__)
        raise UnauthorizedError("Invalid or expired access token")

    request.state.auth = auth
    return auth


async def require_admin(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires the owner or admin role in the token's organization."""
    if not auth.is_admin:
        raise ForbiddenError("Administrator access required")
    return auth
