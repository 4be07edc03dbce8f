"""Calendar sync endpoints."""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from arq import ArqRedis, create_pool
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select

from workblock.deps import DbSession, OrganizationId
from workblock.models.calendar import CalendarConnection, CalendarSyncLog
from workblock.schemas.calendar import CalendarSyncLogRead, SyncEnqueueResponse, SyncResult
from workblock.services.calendar.connection_registry import ConnectionRegistry
from workblock.services.calendar.sync_engine import SyncEngine
from workblock.workers.settings import redis_settings, sync_job_id

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_arq() -> AsyncGenerator[ArqRedis, None]:
    pool = await create_pool(redis_settings)
    try:
        yield pool
    finally:
        await pool.aclose()


Arq = Annotated[ArqRedis, Depends(get_arq)]


@router.post("/sync/{connection_id}", response_model=SyncResult)
async def sync_connection(connection_id: UUID, organization_id: OrganizationId, db: DbSession):
    """Run a sync for one connection right away."""
    await ConnectionRegistry(db).get_connection(connection_id, organization_id)
    return await SyncEngine(db).sync_connection(connection_id)


@router.post("/sync", response_model=SyncEnqueueResponse)
async def sync_all(organization_id: OrganizationId, db: DbSession, arq: Arq):
    """Queue a background sync for every sync-enabled connection of the household."""
    result = await db.execute(
        select(CalendarConnection.id).where(
            CalendarConnection.organization_id == organization_id,
            CalendarConnection.sync_enabled.is_(True),
        )
    )
    connection_ids = list(result.scalars().all())

    for connection_id in connection_ids:
        await arq.enqueue_job(
            "sync_calendar_connection",
            str(connection_id),
            _job_id=sync_job_id(connection_id),
        )

    logger.info("Queued sync for %d connections of org %s", len(connection_ids), organization_id)
    return SyncEnqueueResponse(enqueued=len(connection_ids), connection_ids=connection_ids)


@router.get("/sync/{connection_id}/logs", response_model=list[CalendarSyncLogRead])
async def sync_logs(
    connection_id: UUID,
    organization_id: OrganizationId,
    db: DbSession,
    limit: int = Query(20, ge=1, le=100),
):
    await ConnectionRegistry(db).get_connection(connection_id, organization_id)
    result = await db.execute(
        select(CalendarSyncLog)
        .where(CalendarSyncLog.calendar_connection_id == connection_id)
        .order_by(CalendarSyncLog.sync_started_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
