from collections.abc import Generator
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from easyshift.core.config import get_settings


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}

    if database_url.startswith("sqlite"):
        # Extraction endpoints are async but run sync DB work; the connection must be usable
        # from FastAPI's threadpool as well as the event loop thread.
        connect_args = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return engine


@lru_cache
def get_session_factory() -> sessionmaker | None:
    settings = get_settings()
    if not settings.database_url:
        return None
    return sessionmaker(autocommit=False, autoflush=False, bind=build_engine(settings.database_url))


def get_db() -> Generator[Session, None, None]:
    session_factory = get_session_factory()
    if session_factory is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
