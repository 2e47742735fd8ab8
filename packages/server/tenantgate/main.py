"""
Tenantgate API Server

Entry point for the FastAPI application.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantgate import __version__
from tenantgate.api.v1 import router as api_v1_router
from tenantgate.api.v1.auth import router as auth_router
from tenantgate.core.config import Settings, get_settings
from tenantgate.core.database import build_engine, build_session_factory
from tenantgate.core.logging import configure_logging
from tenantgate.core.redis import RateLimiter, create_redis
from tenantgate.core.security import TokenHasher
from tenantgate.services.email_verification import EmailVerificationService
from tenantgate.services.invites import InviteService
from tenantgate.services.registration import RegistrationService
from tenantgate.services.sessions import SessionManager

log = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    redis_client: Optional[redis.Redis] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Raises ConfigurationError when the token hash secret is missing or short.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    hasher = TokenHasher(settings.token_hash_secret)
    engine = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)
    redis_client = redis_client or create_redis(settings.redis_url)

    verification = EmailVerificationService(
        session_factory,
        hasher,
        settings,
        rate_limiter=RateLimiter(
            redis_client,
            settings.resend_verification_limit,
            settings.resend_verification_window_seconds,
        ),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("tenantgate.starting", version=__version__)
        yield
        log.info("tenantgate.shutting_down")
        await redis_client.aclose()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Tenantgate",
        description="Identity and onboarding for multi-tenant workspaces.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.session_manager = SessionManager(session_factory, hasher, settings)
    app.state.verification_service = verification
    app.state.registration_service = RegistrationService(session_factory, verification, settings)
    app.state.invite_service = InviteService(session_factory, hasher, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Auth routes (not org-scoped)
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the database answers a trivial query."""
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        return {"status": "ready"}

    return app
