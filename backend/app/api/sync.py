from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pymongo.errors import PyMongoError

from app.dependencies import get_staging_sync_service
from app.schemas.sync import SyncSummaryResponse
from app.services.staging_sync import StagingSyncService

router = APIRouter(prefix="/api/sync", tags=["sync"])
logger = logging.getLogger("app.sync_api")


@router.post("/run", response_model=SyncSummaryResponse)
def run_sync_now(
    sync_service: StagingSyncService = Depends(get_staging_sync_service),
) -> SyncSummaryResponse:
    # blocks behind an active run; passes never overlap
    try:
        summary = sync_service.run_once()
    except PyMongoError as exc:
        logger.error("manual staging sync failed error=%s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"staging store unavailable: {exc}",
        ) from exc
    return SyncSummaryResponse.from_summary(summary)
