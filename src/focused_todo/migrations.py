"""Versioned schema migrations and the ledger that applies them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from focused_todo.errors import MigrationError
from focused_todo.models import utc_now


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    up: tuple[str, ...]
    down: tuple[str, ...]


@dataclass(frozen=True)
class AppliedMigration:
    version: int
    name: str
    applied_at: datetime | str | None


LEDGER_TABLE_DDL = """CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
)"""


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        name="create_schema_migrations_table",
        up=(LEDGER_TABLE_DDL,),
        # The ledger table outlives every rollback.
        down=(),
    ),
    Migration(
        version=2,
        name="create_projects_table",
        up=(
            """CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                color TEXT NOT NULL,
                icon TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )""",
        ),
        down=("DROP TABLE IF EXISTS projects",),
    ),
    Migration(
        version=3,
        name="create_tasks_table",
        up=(
            """CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                parent_id INTEGER,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT DEFAULT 'pending',
                priority INTEGER DEFAULT 0,
                due_date DATETIME,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                FOREIGN KEY (parent_id) REFERENCES tasks(id) ON DELETE CASCADE
            )""",
        ),
        down=("DROP TABLE IF EXISTS tasks",),
    ),
    Migration(
        version=4,
        name="create_time_entries_table",
        up=(
            """CREATE TABLE IF NOT EXISTS time_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id INTEGER NOT NULL,
                start_time DATETIME NOT NULL,
                end_time DATETIME,
                duration INTEGER,
                description TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
            )""",
        ),
        down=("DROP TABLE IF EXISTS time_entries",),
    ),
    Migration(
        version=5,
        name="create_performance_indexes",
        up=(
            "CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_parent_id ON tasks(parent_id)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)",
            "CREATE INDEX IF NOT EXISTS idx_time_entries_task_id ON time_entries(task_id)",
            "CREATE INDEX IF NOT EXISTS idx_projects_created_at ON projects(created_at)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at)",
        ),
        down=(
            "DROP INDEX IF EXISTS idx_tasks_project_id",
            "DROP INDEX IF EXISTS idx_tasks_parent_id",
            "DROP INDEX IF EXISTS idx_tasks_status",
            "DROP INDEX IF EXISTS idx_time_entries_task_id",
            "DROP INDEX IF EXISTS idx_projects_created_at",
            "DROP INDEX IF EXISTS idx_tasks_created_at",
        ),
    ),
    Migration(
        version=6,
        name="add_task_completed_at",
        up=(
            "ALTER TABLE tasks ADD COLUMN completed_at DATETIME",
            "CREATE INDEX IF NOT EXISTS idx_time_entries_start_time ON time_entries(start_time)",
        ),
        down=(
            "DROP INDEX IF EXISTS idx_time_entries_start_time",
            "ALTER TABLE tasks DROP COLUMN completed_at",
        ),
    ),
)


class MigrationLedger:
    """Applies and rolls back MIGRATIONS, recording each step in schema_migrations.

    Every migration runs in its own transaction together with its ledger row,
    so a failure leaves the database at the last fully applied version.
    """

    def __init__(self, engine: Engine, migrations: tuple[Migration, ...] = MIGRATIONS) -> None:
        versions = [m.version for m in migrations]
        if versions != sorted(set(versions)):
            raise MigrationError("Migration versions must be unique and ascending")
        self._engine = engine
        self._migrations = migrations

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def ensure_table(self) -> None:
        with self._engine.begin() as conn:
            conn.exec_driver_sql(LEDGER_TABLE_DDL)

    def current_version(self) -> int:
        self.ensure_table()
        with self._engine.connect() as conn:
            return int(
                conn.execute(
                    text("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
                ).scalar_one()
            )

    def pending(self) -> list[Migration]:
        current = self.current_version()
        return [m for m in self._migrations if m.version > current]

    def apply_pending(self) -> int:
        """Apply every migration above the current version; return the final version."""
        current = self.current_version()
        logger.info("Current database version", version=current)
        for migration in self._migrations:
            if migration.version <= current:
                continue
            self._apply(migration)
        final = self.current_version()
        logger.info("Database migrations complete", version=final)
        return final

    def rollback_to(self, target_version: int) -> int:
        """Run down steps from the current version down to (not including) the target."""
        current = self.current_version()
        if target_version >= current:
            raise MigrationError(
                f"target version {target_version} is not less than current version {current}"
            )
        if target_version < 1:
            raise MigrationError("cannot roll back the migration ledger itself")
        by_version = {m.version: m for m in self._migrations}
        for version in range(current, target_version, -1):
            migration = by_version.get(version)
            if migration is None:
                raise MigrationError(f"migration version {version} not found")
            self._rollback(migration)
        return self.current_version()

    def applied_migrations(self) -> list[AppliedMigration]:
        self.ensure_table()
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("SELECT version, name, applied_at FROM schema_migrations ORDER BY version")
            ).all()
        return [AppliedMigration(version=r.version, name=r.name, applied_at=r.applied_at) for r in rows]

    def _apply(self, migration: Migration) -> None:
        logger.info("Applying migration", version=migration.version, name=migration.name)
        try:
            with self._engine.begin() as conn:
                for statement in migration.up:
                    conn.exec_driver_sql(statement)
                conn.execute(
                    text(
                        "INSERT INTO schema_migrations (version, name, applied_at) "
                        "VALUES (:version, :name, :applied_at)"
                    ),
                    {
                        "version": migration.version,
                        "name": migration.name,
                        "applied_at": utc_now().replace(tzinfo=None).isoformat(sep=" "),
                    },
                )
        except SQLAlchemyError as exc:
            logger.error(
                "Migration failed",
                version=migration.version,
                name=migration.name,
                error=str(exc),
            )
            raise MigrationError(
                f"failed to apply migration {migration.version} ({migration.name}): {exc}"
            ) from exc

    def _rollback(self, migration: Migration) -> None:
        logger.info("Rolling back migration", version=migration.version, name=migration.name)
        try:
            with self._engine.begin() as conn:
                for statement in migration.down:
                    conn.exec_driver_sql(statement)
                conn.execute(
                    text("DELETE FROM schema_migrations WHERE version = :version"),
                    {"version": migration.version},
                )
        except SQLAlchemyError as exc:
            logger.error(
                "Migration rollback failed",
                version=migration.version,
                name=migration.name,
                error=str(exc),
            )
            raise MigrationError(
                f"failed to rollback migration {migration.version} ({migration.name}): {exc}"
            ) from exc
