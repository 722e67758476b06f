from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo import MongoClient
from pymongo.errors import PyMongoError
from sqlalchemy.orm import Session

from app.db.mongo import ping_mongo
from app.db.session import check_db_connection, get_db
from app.dependencies import get_mongo_client

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health():
    return {"ok": True, "service": "atmos-sync"}


@router.get("/mongo")
def health_mongo(client: MongoClient = Depends(get_mongo_client)):
    try:
        ok, server_info = ping_mongo(client)
    except PyMongoError as exc:
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    if not ok:
        return JSONResponse(status_code=500, content={"ok": False})
    return {"ok": True, "mongo": server_info or True}


@router.get("/db")
def health_db(db: Session = Depends(get_db)):
    ok, error = check_db_connection(db)
    if not ok:
        return JSONResponse(status_code=500, content={"ok": False, "error": error})
    return {"ok": True}
