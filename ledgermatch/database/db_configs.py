from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from ledgermatch.config.settings import settings


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def enable_sqlite_savepoints(target_engine: Engine) -> None:
    """
    Let SQLAlchemy own transaction boundaries on pysqlite connections.

    Without this the driver defers BEGIN until the first DML statement, so a
    SAVEPOINT issued first would become the outermost transaction.
    """

    @event.listens_for(target_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _build_engine(url: str) -> Engine:
    if is_sqlite_url(url):
        built = create_engine(url, connect_args={"check_same_thread": False})
        enable_sqlite_savepoints(built)
        return built
    return create_engine(url, pool_pre_ping=True)


engine = _build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autoflush=False, autocommit=False, bind=engine)
Base = declarative_base()


def get_database():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dispose_engine() -> None:
    engine.dispose()


def utc_now() -> datetime:
    """Naive UTC timestamp, comparable with server-side CURRENT_TIMESTAMP values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
