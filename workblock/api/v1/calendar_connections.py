"""Calendar connection endpoints: list, inspect, toggle settings, disconnect."""

import logging
from uuid import UUID

from fastapi import APIRouter

from workblock.deps import CurrentUser, DbSession, OrganizationId
from workblock.schemas.calendar import (
    CalendarConnectionRead,
    CalendarSettingsUpdate,
    DisconnectResponse,
)
from workblock.services.calendar.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/connections", response_model=list[CalendarConnectionRead])
async def list_connections(organization_id: OrganizationId, db: DbSession):
    """List the household's calendar connections."""
    return await ConnectionRegistry(db).list_connections(organization_id)


@router.get("/connections/{connection_id}", response_model=CalendarConnectionRead)
async def get_connection(connection_id: UUID, organization_id: OrganizationId, db: DbSession):
    return await ConnectionRegistry(db).get_connection(connection_id, organization_id)


@router.patch("/connections/{connection_id}/settings", response_model=CalendarConnectionRead)
async def update_connection_settings(
    connection_id: UUID,
    body: CalendarSettingsUpdate,
    user: CurrentUser,
    organization_id: OrganizationId,
    db: DbSession,
):
    """Toggle sync, auto-block, notifications or lesson push. Owner only."""
    registry = ConnectionRegistry(db)
    await registry.get_connection(connection_id, organization_id)
    return await registry.update_settings(
        connection_id, user.id, body.model_dump(exclude_unset=True)
    )


@router.delete("/connections/{connection_id}", response_model=DisconnectResponse)
async def disconnect(
    connection_id: UUID,
    user: CurrentUser,
    organization_id: OrganizationId,
    db: DbSession,
):
    """Disconnect a calendar and drop everything synced from it. Owner only."""
    registry = ConnectionRegistry(db)
    await registry.get_connection(connection_id, organization_id)
    return await registry.disconnect(connection_id, user.id)
