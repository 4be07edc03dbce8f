"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from workblock.api.v1 import auto_block, calendar_connections, calendar_oauth, calendar_sync, conflicts

api_router = APIRouter()

api_router.include_router(calendar_oauth.router, prefix="/calendar", tags=["calendar-oauth"])
api_router.include_router(calendar_connections.router, prefix="/calendar", tags=["calendar-connections"])
api_router.include_router(calendar_sync.router, prefix="/calendar", tags=["calendar-sync"])
api_router.include_router(auto_block.router, prefix="/calendar", tags=["auto-block"])
api_router.include_router(conflicts.router, prefix="/calendar", tags=["conflicts"])
