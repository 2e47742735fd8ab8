"""
Authentication endpoints.

- Self-serve registration and email verification
- Email/password login
- Refresh-token rotation and logout
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request

from tenantgate.api.deps import (
    client_ip,
    get_registration_service,
    get_session_manager,
    get_verification_service,
    token_response,
    user_agent,
)
from tenantgate.core.errors import ValidationFailedError
from tenantgate.services.email_verification import EmailVerificationService
from tenantgate.services.registration import RegistrationInput, RegistrationService
from tenantgate.services.sessions import SessionManager

from tenantgate_shared.schemas.auth import (
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResendVerificationRequest,
    TokenResponse,
    VerifyEmailResponse,
)

log = structlog.get_logger()
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration & verification
# ---------------------------------------------------------------------------

@router.post("/register", response_model=MessageResponse)
async def register(
    body: RegisterRequest,
    request: Request,
    registration: RegistrationService = Depends(get_registration_service),
):
    """Register a user and organization. The response is identical for new and known emails."""
    result = await registration.register_self_serve(
        RegistrationInput(
            email=body.email,
            password=body.password,
            full_name=body.full_name,
            org_name=body.org_name,
            org_slug=body.org_slug,
            ip=client_ip(request),
            user_agent=user_agent(request),
        )
    )
    return MessageResponse(message=result.message)


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    body: ResendVerificationRequest,
    request: Request,
    verification: EmailVerificationService = Depends(get_verification_service),
):
    message = await verification.resend_verification(
        body.email, ip=client_ip(request), user_agent=user_agent(request)
    )
    return MessageResponse(message=message)


@router.get("/verify-email", response_model=VerifyEmailResponse)
async def verify_email(
    token: Optional[str] = Query(default=None),
    verification: EmailVerificationService = Depends(get_verification_service),
):
    if not token:
        raise ValidationFailedError("Verification token is required", code="TOKEN_REQUIRED")
    result = await verification.verify_token(token)
    return VerifyEmailResponse(message="Email verified successfully", user_id=result.user_id)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
):
    issued = await sessions.login(
        body.email, body.password, user_agent=user_agent(request), ip_address=client_ip(request)
    )
    return token_response(issued)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_session(
    body: RefreshRequest,
    sessions: SessionManager = Depends(get_session_manager),
):
    """Exchange a refresh token for a new token pair; the presented token stops working."""
    issued = await sessions.refresh(body.refresh_token)
    return token_response(issued)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: RefreshRequest,
    sessions: SessionManager = Depends(get_session_manager),
):
    await sessions.logout(body.refresh_token)
    return MessageResponse(message="Logged out")
