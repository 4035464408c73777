"""Polling parameters for clients."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from safedeal.api.deps import get_app_settings
from safedeal.config import Settings
from safedeal.schemas.conversation import SyncConfigResponse

router = APIRouter(prefix="/api/v1/sync", tags=["Sync"])


@router.get(
    "/config",
    response_model=SyncConfigResponse,
    summary="Recommended poll interval and page size",
)
async def sync_config(settings: Settings = Depends(get_app_settings)) -> SyncConfigResponse:
    return SyncConfigResponse(
        poll_interval_seconds=settings.poll_interval_seconds,
        message_page_size=settings.message_page_size,
    )
