"""
Invite endpoints.

- Admin: create, list and revoke invites for the caller's organization
- Public: preview and accept an invite by token
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from tenantgate.api.deps import (
    client_ip,
    get_invite_service,
    get_session_manager,
    token_response,
    user_agent,
)
from tenantgate.core.auth import AuthenticatedUser, require_admin
from tenantgate.core.errors import NotFoundError
from tenantgate.services.invites import INVITE_NOT_FOUND, InviteContext, InviteService
from tenantgate.services.sessions import SessionManager

from tenantgate_shared.schemas.auth import MessageResponse, TokenResponse
from tenantgate_shared.schemas.invites import (
    InviteAcceptRequest,
    InviteCreateRequest,
    InviteListResponse,
    InvitePreviewResponse,
    InviteResponse,
)

router_admin = APIRouter()
router_public = APIRouter()


def _context(auth: AuthenticatedUser) -> InviteContext:
    return InviteContext(
        organization_id=auth.organization_id,
        user_id=auth.user_id,
        role=auth.role,
    )


@router_admin.post("", response_model=InviteResponse, status_code=201)
async def create_invite(
    body: InviteCreateRequest,
    auth: AuthenticatedUser = Depends(require_admin),
    invites: InviteService = Depends(get_invite_service),
):
    created = await invites.create_invite(
        _context(auth),
        body.email,
        body.role,
        body.message,
        workspace_assignments=body.workspace_assignments,
    )
    return InviteResponse(
        id=created.id,
        email=created.email,
        role=created.role,
        expires_at=created.expires_at,
        invite_link=created.invite_link,
        workspace_assignments=list(created.workspace_assignments),
    )


@router_admin.get("", response_model=InviteListResponse)
async def list_invites(
    auth: AuthenticatedUser = Depends(require_admin),
    invites: InviteService = Depends(get_invite_service),
):
    pending = await invites.list_pending_invites(_context(auth))
    return InviteListResponse(
        data=[
            InviteResponse(id=i.id, email=i.email, role=i.role, expires_at=i.expires_at)
            for i in pending
        ]
    )


@router_admin.post("/{invite_id}/revoke", response_model=MessageResponse)
async def revoke_invite(
    invite_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_admin),
    invites: InviteService = Depends(get_invite_service),
):
    await invites.revoke_invite(_context(auth), invite_id)
    return MessageResponse(message="Invite revoked")


@router_public.get("/validate", response_model=InvitePreviewResponse)
async def validate_invite(
    token: Optional[str] = Query(default=None),
    invites: InviteService = Depends(get_invite_service),
):
    if not token:
        raise NotFoundError(INVITE_NOT_FOUND, code="ORG_INVITE_NOT_FOUND")
    preview = await invites.validate_invite_token(token)
    return InvitePreviewResponse(
        email=preview.email,
        role=preview.role,
        org_name=preview.org_name,
        expires_at=preview.expires_at,
    )


@router_public.post("/accept", response_model=TokenResponse)
async def accept_invite(
    body: InviteAcceptRequest,
    request: Request,
    invites: InviteService = Depends(get_invite_service),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Accept an invite and sign the new user in."""
    accepted = await invites.accept_invite(body.token, body.full_name, body.password)
    issued = await sessions.issue(
        user_id=accepted.user_id,
        organization_id=accepted.organization_id,
        role=accepted.role,
        user_agent=user_agent(request),
        ip_address=client_ip(request),
    )
    return token_response(issued)
