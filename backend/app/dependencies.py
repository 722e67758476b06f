from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from pymongo import MongoClient

    from app.services.staging_sync import StagingSyncService


def get_staging_sync_service(request: Request) -> "StagingSyncService":
    service = getattr(request.app.state, "staging_sync_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Staging sync service is not initialized")
    return service


def get_mongo_client(request: Request) -> "MongoClient":
    client = getattr(request.app.state, "mongo_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="MongoDB client is not initialized")
    return client
