import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from sqlalchemy.orm import Session

from app.api.health import router as health_router
from app.api.sync import router as sync_router
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging
from app.db.mongo import create_mongo_client, get_staging_collection
from app.db.session import SessionLocal, check_db_connection, get_db
from app.repositories.staging_documents import StagingDocumentStore
from app.services.metadata_cache import MetadataCache
from app.services.mqtt_processor import MqttProcessorService
from app.services.staging_sync import StagingSyncService
from app.services.staging_watcher import StagingWatcherService
from app.services.value_writer import CapturedValueWriter

logger = logging.getLogger("app.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    mongo_client = create_mongo_client(settings)
    document_store = StagingDocumentStore(get_staging_collection(mongo_client, settings))
    writer = CapturedValueWriter(session_factory=SessionLocal)

    # each ingress owns its cache; they never share entries
    staging_sync_service = StagingSyncService(
        document_store=document_store,
        metadata_cache=MetadataCache(session_factory=SessionLocal, name="staging_sync"),
        writer=writer,
    )
    staging_watcher_service = StagingWatcherService(
        settings=settings,
        document_store=document_store,
        sync_service=staging_sync_service,
    )
    mqtt_processor_service = MqttProcessorService(
        settings=settings,
        metadata_cache=MetadataCache(session_factory=SessionLocal, name="mqtt_processor"),
        writer=writer,
        document_store=document_store,
    )

    app.state.settings = settings
    app.state.mongo_client = mongo_client
    app.state.staging_sync_service = staging_sync_service
    app.state.staging_watcher_service = staging_watcher_service
    app.state.mqtt_processor_service = mqtt_processor_service

    if settings.staging_watcher_enabled:
        staging_watcher_service.start()
    else:
        logger.info("staging watcher disabled by configuration")
    if settings.mqtt_enabled:
        mqtt_processor_service.start()
    else:
        logger.info("mqtt processor disabled by configuration")
    try:
        yield
    finally:
        mqtt_processor_service.stop()
        staging_watcher_service.stop()
        mongo_client.close()


app = FastAPI(title="Atmos Sync Backend", lifespan=lifespan)
app.include_router(health_router)
app.include_router(sync_router)


@app.get("/status")
def status(request: Request, db: Session = Depends(get_db)):
    db_ok, db_error = check_db_connection(db)
    settings: Settings | None = getattr(request.app.state, "settings", None)
    staging_sync_service: StagingSyncService | None = getattr(
        request.app.state,
        "staging_sync_service",
        None,
    )
    staging_watcher_service: StagingWatcherService | None = getattr(
        request.app.state,
        "staging_watcher_service",
        None,
    )
    mqtt_processor_service: MqttProcessorService | None = getattr(
        request.app.state,
        "mqtt_processor_service",
        None,
    )

    db_status: dict[str, object] = {"ok": db_ok}
    if db_error:
        db_status["error"] = db_error

    if staging_sync_service is None:
        sync_status: dict[str, object] = {"runs_total": 0, "error": "Staging sync service not initialized"}
    else:
        sync_status = staging_sync_service.get_status_snapshot()

    if staging_watcher_service is None:
        watcher_status: dict[str, object] = {
            "enabled": False,
            "running": False,
            "error": "Staging watcher service not initialized",
        }
    else:
        watcher_status = staging_watcher_service.get_status_snapshot()

    if mqtt_processor_service is None:
        mqtt_status: dict[str, object] = {
            "enabled": False,
            "running": False,
            "error": "MQTT processor service not initialized",
        }
    else:
        mqtt_status = mqtt_processor_service.get_status_snapshot()

    return {
        "status": "working",
        "service": "atmos-sync",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_status,
        "staging_sync": sync_status,
        "staging_watcher": watcher_status,
        "mqtt": mqtt_status,
        "config": {
            "mongo_database": settings.mongo_database if settings else None,
            "mongo_collection": settings.mongo_collection if settings else None,
            "staging_sync_interval_seconds": (
                settings.staging_sync_interval_seconds if settings else None
            ),
            "staging_watcher_reconnect_seconds": (
                settings.staging_watcher_reconnect_seconds if settings else None
            ),
            "mqtt_subscribe_topic": settings.mqtt_subscribe_topic if settings else None,
        },
    }
