"""
API v1 Router

Invite administration is scoped to the organization in the caller's access
token; invite preview and acceptance are public.
"""

from fastapi import APIRouter

from .invites import router_admin as invites_admin_router
from .invites import router_public as invites_public_router

router = APIRouter()

router.include_router(invites_admin_router, prefix="/orgs/invites", tags=["Invites"])
router.include_router(invites_public_router, prefix="/invites", tags=["Invites"])


@router.get("/", tags=["API"])
async def api_root():
    """API root. Returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/orgs/invites",
            "/orgs/invites/{invite_id}/revoke",
            "/invites/validate",
            "/invites/accept",
        ],
    }
