from sqlalchemy import event
from sqlmodel import create_engine, SQLModel
from . import models  # noqa: F401  registers tables on SQLModel.metadata
from .logging_utils import get_logger
from .settings import settings

logger = get_logger("escape_room.init_db")


def _begin_immediate(engine) -> None:
    # SQLite: take the write lock at BEGIN so concurrent writers queue on the
    # busy timeout instead of failing a SHARED -> RESERVED upgrade mid-transaction
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str, timeout_seconds: int = 30):
    """Build the engine for ``url``; every store call is bounded by ``timeout_seconds``."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
        )
        _begin_immediate(engine)
        return engine

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    return create_engine(
        url,
        echo=False,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
        pool_timeout=timeout_seconds,
    )


def init_db(url: str = "", timeout_seconds: int = 0):
    url = url or settings.database_url
    engine = create_db_engine(url, timeout_seconds or settings.db_timeout_seconds)
    SQLModel.metadata.create_all(engine)
    logger.info("db_initialized", extra={"operation": "create_all"})
    return engine


if __name__ == '__main__':
    init_db()
