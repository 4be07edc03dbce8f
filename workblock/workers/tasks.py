"""Arq task definitions for calendar sync and reconciliation."""

import logging
from uuid import UUID

from arq import ArqRedis, cron
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workblock.config import get_settings
from workblock.errors import CalendarError, SyncInProgress
from workblock.models.calendar import CalendarConnection
from workblock.services.calendar.auto_block import AutoBlockReconciler
from workblock.services.calendar.conflict_detector import ConflictDetector
from workblock.services.calendar.sync_engine import SyncEngine
from workblock.workers.settings import reconcile_job_id, redis_settings, sync_job_id

settings = get_settings()
logger = logging.getLogger(__name__)


# Create engine for worker (separate from web app)
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncSession:
    """Get database session for worker."""
    return async_session_maker()


async def sync_calendar_connection(ctx: dict, connection_id: str) -> dict:
    """Sync one connection, then queue the organization's reconcile pass."""
    conn_uuid = UUID(connection_id)
    db = await get_db()
    try:
        try:
            summary = await SyncEngine(db).sync_connection(conn_uuid)
        except SyncInProgress:
            logger.info("Connection %s already syncing, skipping", connection_id)
            return {"skipped": True}
        except CalendarError as e:
            # Already recorded on the connection and in the sync log
            return {"error": e.code, "detail": e.message}

        organization_id = await db.scalar(
            select(CalendarConnection.organization_id).where(CalendarConnection.id == conn_uuid)
        )
        redis: ArqRedis | None = ctx.get("redis")  # type: ignore[assignment]
        if redis and organization_id:
            await redis.enqueue_job(
                "reconcile_organization",
                str(organization_id),
                _job_id=reconcile_job_id(organization_id),
            )
        return summary
    finally:
        await db.close()


async def reconcile_organization(ctx: dict, organization_id: str) -> dict:
    """Auto-block pass followed by a conflict scan."""
    org_uuid = UUID(organization_id)
    db = await get_db()
    try:
        blocks = await AutoBlockReconciler(db).process(org_uuid)
        conflicts = await ConflictDetector(db).scan_lessons_for_conflicts(org_uuid)
        logger.info(
            "Reconciled org %s: %d blocks created, %d removed, %d events flagged",
            organization_id,
            blocks["blocks_created"],
            blocks["blocks_removed"],
            conflicts["events_flagged"],
        )
        return {"auto_block": blocks, "conflicts": conflicts}
    finally:
        await db.close()


async def sync_all_calendar_connections(ctx: dict) -> dict:
    """Cron job: enqueue sync for all sync-enabled calendar connections."""
    db = await get_db()
    try:
        result = await db.execute(
            select(CalendarConnection.id).where(CalendarConnection.sync_enabled.is_(True))
        )
        connection_ids = result.scalars().all()

        redis: ArqRedis | None = ctx.get("redis")  # type: ignore[assignment]
        if not redis:
            logger.error("No Redis in ctx for cron job")
            return {"error": "No Redis"}

        enqueued = 0
        for connection_id in connection_ids:
            job = await redis.enqueue_job(
                "sync_calendar_connection",
                str(connection_id),
                _job_id=sync_job_id(connection_id),
            )
            if job is not None:
                enqueued += 1

        logger.info("Cron: enqueued sync for %d calendar connections", enqueued)
        return {"enqueued": enqueued}
    finally:
        await db.close()


# ── Lifecycle ───────────────────────────────────────────────────────


async def startup(ctx: dict) -> None:
    """Worker startup hook."""
    logging.basicConfig(level=settings.log_level)
    logger.info("Worker starting up...")


async def shutdown(ctx: dict) -> None:
    """Worker shutdown hook."""
    logger.info("Worker shutting down...")
    await engine.dispose()


class WorkerSettings:
    """Arq worker settings."""

    functions = [sync_calendar_connection, reconcile_organization]
    cron_jobs = [
        cron(
            sync_all_calendar_connections,
            minute={0, 15, 30, 45},
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
    max_jobs = 10
    job_timeout = settings.sync_job_timeout_seconds + 60
    keep_result = 3600  # Keep results for 1 hour
