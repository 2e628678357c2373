"""SQLite engine, session factory and schema bootstrap."""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from focused_todo.errors import InternalError
from focused_todo.migrations import MigrationLedger
from focused_todo.settings import Settings


def create_sqlite_engine(
    database_path: Path,
    pool_size: int = 5,
    max_overflow: int = 5,
    busy_timeout_ms: int = 5000,
) -> Engine:
    """Create an engine with WAL, foreign keys and explicit BEGIN handling."""
    database_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{database_path.as_posix()}",
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy so DDL is transactional too.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


class Database:
    """Owns the engine and session factory for one SQLite file."""

    def __init__(self, settings: Settings) -> None:
        self.path = settings.resolved_database_path
        self.engine = create_sqlite_engine(
            self.path,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            busy_timeout_ms=settings.database_busy_timeout_ms,
        )
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=True, expire_on_commit=False
        )
        self.ledger = MigrationLedger(self.engine)
        logger.info("Database engine created", path=self.path.as_posix())

    def migrate(self) -> int:
        return self.ledger.apply_pending()

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed", path=self.path.as_posix())


def open_database(settings: Settings) -> Database:
    """Open the database file and bring its schema up to date."""
    database = Database(settings)
    try:
        database.migrate()
    except Exception:
        database.close()
        raise
    return database


def commit_session(db: Session, action: str) -> None:
    """Commit, turning driver failures into InternalError after a rollback."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Database error", extra={"action": action, "error": str(exc)})
        raise InternalError(f"failed to {action}") from exc
