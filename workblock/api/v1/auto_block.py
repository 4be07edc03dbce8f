"""Auto-block endpoints."""

from fastapi import APIRouter

from workblock.deps import DbSession, OrganizationId
from workblock.schemas.calendar import AutoBlockProcessResult, AutoBlockStatus
from workblock.services.calendar.auto_block import AutoBlockReconciler

router = APIRouter()


@router.post("/auto-block/process", response_model=AutoBlockProcessResult)
async def process_auto_blocks(organization_id: OrganizationId, db: DbSession):
    """Create missing work-event blocks and remove or refresh stale ones."""
    return await AutoBlockReconciler(db).process(organization_id)


@router.get("/auto-block/status", response_model=AutoBlockStatus)
async def auto_block_status(organization_id: OrganizationId, db: DbSession):
    return await AutoBlockReconciler(db).status(organization_id)
