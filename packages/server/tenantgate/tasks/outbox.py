"""
ARQ background task: deliver pending identity emails from the auth outbox.

Scheduled every 30 seconds. Any number of workers may run it concurrently;
rows are claimed with FOR UPDATE SKIP LOCKED.
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings
import structlog

from tenantgate.core.config import get_settings
from tenantgate.core.database import build_engine, build_session_factory
from tenantgate.core.logging import configure_logging
from tenantgate.services.email import build_email_sender
from tenantgate.services.outbox import OutboxDispatcher

log = structlog.get_logger()
settings = get_settings()


async def startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format)
    engine = build_engine(settings)
    sender = build_email_sender(
        settings.sendgrid_api_key, settings.email_from, settings.email_timeout_seconds
    )
    ctx["engine"] = engine
    ctx["email_sender"] = sender
    ctx["dispatcher"] = OutboxDispatcher(build_session_factory(engine), sender, settings)
    log.info("outbox_worker.started", enabled=settings.outbox_enabled,
             batch_size=settings.outbox_batch_size)


async def shutdown(ctx: dict) -> None:
    sender = ctx.get("email_sender")
    if sender is not None and hasattr(sender, "close"):
        await sender.close()
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()
    log.info("outbox_worker.stopped")


async def process_outbox(ctx: dict) -> int:
    """Claim and process one batch. Returns the number of rows claimed."""
    dispatcher: OutboxDispatcher = ctx["dispatcher"]
    summary = await dispatcher.run_once()
    return summary.claimed


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [process_outbox]
    cron_jobs = [
        cron(process_outbox, second={0, 30}, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
