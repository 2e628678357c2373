from __future__ import annotations

import signal
import threading
from typing import Optional

import typer
from loguru import logger
from werkzeug.serving import make_server

from focused_todo.api_server import create_app
from focused_todo.database import Database, open_database
from focused_todo.errors import MigrationError
from focused_todo.logging_config import setup_logging
from focused_todo.rate_limiter import RateLimiter
from focused_todo.settings import Settings, get_settings

app = typer.Typer(help="Focused todo backend: REST API and database maintenance.")
migrate_app = typer.Typer(help="Inspect and change the database schema version.")
app.add_typer(migrate_app, name="migrate")


def _load_settings(**overrides) -> Settings:
    settings = get_settings()
    updates = {key: value for key, value in overrides.items() if value is not None}
    if updates:
        settings = settings.model_copy(update=updates)
    setup_logging(settings)
    return settings


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind"),
    port: Optional[int] = typer.Option(None, help="Port to listen on"),
    database_path: Optional[str] = typer.Option(None, help="SQLite database file"),
):
    """Run the HTTP API until interrupted."""
    settings = _load_settings(host=host, port=port, database_path=database_path)
    try:
        database = open_database(settings)
    except MigrationError as exc:
        logger.error("Database initialization failed", extra={"error": str(exc)})
        typer.echo(f"Database initialization failed: {exc}", err=True)
        raise typer.Exit(code=1)

    limiter = RateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        sweep_seconds=settings.rate_limit_sweep_seconds,
    )
    server = make_server(
        settings.host, settings.port, create_app(database, settings, limiter), threaded=True
    )
    stop_requested = threading.Event()

    def _request_stop(signum, frame):
        logger.info("Shutdown signal received", extra={"signal": signum})
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    limiter.start()
    serving = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
    serving.start()
    logger.info("Server listening", extra={"host": settings.host, "port": settings.port})
    typer.echo(f"Listening on http://{settings.host}:{settings.port}")

    try:
        while not stop_requested.wait(timeout=1.0):
            if not serving.is_alive():
                logger.error("HTTP server thread exited unexpectedly")
                break
    finally:
        closer = threading.Thread(target=server.shutdown, daemon=True)
        closer.start()
        closer.join(timeout=settings.shutdown_timeout_seconds)
        if closer.is_alive():
            logger.warning(
                "Server did not stop in time",
                extra={"timeout": settings.shutdown_timeout_seconds},
            )
        server.server_close()
        limiter.stop()
        database.close()
        logger.info("Server stopped")


@migrate_app.command("status")
def migrate_status(
    database_path: Optional[str] = typer.Option(None, help="SQLite database file"),
):
    """Show applied and pending migrations."""
    settings = _load_settings(database_path=database_path)
    database = Database(settings)
    try:
        ledger = database.ledger
        typer.echo(f"Current version: {ledger.current_version()} (latest {ledger.latest_version})")
        for record in ledger.applied_migrations():
            typer.echo(f"  [x] {record.version:>3} {record.name}  {record.applied_at}")
        for migration in ledger.pending():
            typer.echo(f"  [ ] {migration.version:>3} {migration.name}")
    finally:
        database.close()


@migrate_app.command("up")
def migrate_up(
    database_path: Optional[str] = typer.Option(None, help="SQLite database file"),
):
    """Apply all pending migrations."""
    settings = _load_settings(database_path=database_path)
    database = Database(settings)
    try:
        version = database.migrate()
    except MigrationError as exc:
        typer.echo(f"Migration failed: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        database.close()
    typer.echo(f"Database at version {version}")


@migrate_app.command("rollback")
def migrate_rollback(
    target: int = typer.Argument(..., help="Version to roll back to"),
    database_path: Optional[str] = typer.Option(None, help="SQLite database file"),
):
    """Roll back applied migrations down to TARGET."""
    settings = _load_settings(database_path=database_path)
    database = Database(settings)
    try:
        version = database.ledger.rollback_to(target)
    except MigrationError as exc:
        typer.echo(f"Rollback failed: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        database.close()
    typer.echo(f"Database at version {version}")


if __name__ == "__main__":
    app()
