from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings


def create_session_factory(engine: Engine) -> sessionmaker:
    # Captured values are written once and read back by nobody in-process, so
    # objects never need a refresh after commit.
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


def create_db_engine(database_url: str, **engine_options: Any) -> Engine:
    options: dict[str, Any] = {"pool_pre_ping": True}
    options.update(engine_options)
    return create_engine(database_url, **options)


settings = get_settings()
engine = create_db_engine(settings.database_url)
SessionLocal = create_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connection(db: Session) -> tuple[bool, str | None]:
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except Exception as exc:
        return False, str(exc)
