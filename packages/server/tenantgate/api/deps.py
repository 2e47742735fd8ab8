"""
Request-scoped accessors for the services built in ``create_app``.
"""

from __future__ import annotations

import ipaddress
from typing import Optional

from fastapi import Request

from tenantgate.services.email_verification import EmailVerificationService
from tenantgate.services.invites import InviteService
from tenantgate.services.registration import RegistrationService
from tenantgate.services.sessions import IssuedSession, SessionManager

from tenantgate_shared.schemas.auth import TokenResponse


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_registration_service(request: Request) -> RegistrationService:
    return request.app.state.registration_service


def get_verification_service(request: Request) -> EmailVerificationService:
    return request.app.state.verification_service


def get_invite_service(request: Request) -> InviteService:
    return request.app.state.invite_service


def _parse_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop if it is a valid address, else the peer address."""
    forwarded = _parse_ip(request.headers.get("x-forwarded-for", "").split(",")[0])
    if forwarded:
        return forwarded
    return _parse_ip(request.client.host) if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


def token_response(issued: IssuedSession) -> TokenResponse:
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=issued.expires_in,
        session_id=issued.session_id,
        user_id=issued.user_id,
        organization_id=issued.organization_id,
    )
