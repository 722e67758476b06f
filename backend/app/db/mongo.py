from __future__ import annotations

from typing import Any

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import OperationFailure

from app.core.config import Settings


def create_mongo_client(settings: Settings) -> MongoClient:
    # MongoClient connects lazily; the first operation does server selection.
    return MongoClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
        tz_aware=True,
    )


def get_staging_collection(client: MongoClient, settings: Settings) -> Collection:
    return client[settings.mongo_database][settings.mongo_collection]


def ping_mongo(client: MongoClient) -> tuple[bool, dict[str, Any] | None]:
    admin_db = client.get_database("admin")
    result = admin_db.command({"ping": 1})
    ok = bool(result.get("ok"))
    server_info: dict[str, Any] | None = None
    try:
        status = admin_db.command({"serverStatus": 1})
    except OperationFailure:
        # serverStatus needs clusterMonitor; ping alone is enough for health
        status = None
    if isinstance(status, dict):
        server_info = {
            "host": status.get("host"),
            "version": status.get("version"),
            "uptime_seconds": status.get("uptime"),
        }
    return ok, server_info
