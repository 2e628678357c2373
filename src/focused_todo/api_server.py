"""REST API over projects, tasks and time entries.

Every response is JSON. Successful calls return ``{"data": ..., "success": true}``
with an optional ``message``; failures return ``{"error": ..., "code": ...}`` and,
for field validation failures, a ``details`` mapping of field to message.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any, Optional, Type, TypeVar

from flask import Blueprint, Flask, current_app, g, jsonify, request
from loguru import logger
from pydantic import BaseModel, ValidationError
from werkzeug.exceptions import HTTPException

from focused_todo.database import Database
from focused_todo.errors import (
    BusinessRuleViolation,
    ConflictError,
    FocusedTodoError,
    NotFoundError,
    ReferentialViolation,
    ValidationViolation,
)
from focused_todo.models import TaskOrder
from focused_todo.project_service import ProjectService
from focused_todo.rate_limiter import RateLimiter
from focused_todo.schemas import (
    ProjectCreate,
    ProjectOut,
    ProjectUpdate,
    ReorderTasksRequest,
    StartTimeEntryRequest,
    StopTimeEntryRequest,
    TaskCreate,
    TaskOut,
    TaskPriorityUpdate,
    TaskStatusUpdate,
    TaskUpdate,
    TimeEntryCreate,
    TimeEntryOut,
    TimeEntryUpdate,
)
from focused_todo.settings import Settings
from focused_todo.task_service import TaskService
from focused_todo.time_entry_service import TimeEntryService

ModelT = TypeVar("ModelT", bound=BaseModel)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'",
}

ERROR_STATUS: dict[Type[FocusedTodoError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    ValidationViolation: 400,
    ReferentialViolation: 400,
    BusinessRuleViolation: 400,
}

api = Blueprint("api", __name__, url_prefix="/api")


# ---------------------------------------------------------------------------
# Helpers


def success(data: Any, status: int = 200, message: Optional[str] = None):
    body: dict[str, Any] = {"data": data, "success": True}
    if message:
        body["message"] = message
    return jsonify(body), status


def error(message: str, status: int, code: Optional[str] = None, details: Optional[dict] = None):
    body: dict[str, Any] = {"error": message}
    if code:
        body["code"] = code
    if details:
        body["details"] = details
    return jsonify(body), status


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


def parse_body(model: Type[ModelT]) -> ModelT:
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationViolation("Invalid JSON format")
    return model.model_validate(payload)


def parse_optional_body(model: Type[ModelT]) -> ModelT:
    if not request.get_data():
        return model()
    return parse_body(model)


def dump(schema: Type[BaseModel], obj: Any) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


def dump_all(schema: Type[BaseModel], objs) -> list[dict]:
    return [dump(schema, obj) for obj in objs]


def query_id(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        raise ValidationViolation(
            f"{name} must be a positive integer", details={name: "must be a positive integer"}
        )
    return value


def db_session():
    if "db" not in g:
        g.db = current_app.extensions["focused_todo.database"].SessionLocal()
    return g.db


def projects() -> ProjectService:
    return ProjectService(db_session())


def tasks() -> TaskService:
    return TaskService(db_session())


def time_entries() -> TimeEntryService:
    return TimeEntryService(db_session())


# ---------------------------------------------------------------------------
# Health


@api.get("/health")
def health():
    return jsonify({"status": "ok", "timestamp": int(datetime.now(tz=UTC).timestamp())})


# ---------------------------------------------------------------------------
# Projects


@api.get("/projects")
def list_projects():
    return success(dump_all(ProjectOut, projects().get_all_projects()))


@api.post("/projects")
def create_project():
    project = projects().create_project(parse_body(ProjectCreate))
    return success(dump(ProjectOut, project), 201, "Project created successfully")


@api.get("/projects/with-counts")
def list_projects_with_counts():
    rows = projects().get_projects_with_task_counts()
    return success([row.model_dump(mode="json") for row in rows])


@api.get("/projects/<int:project_id>")
def get_project(project_id: int):
    return success(dump(ProjectOut, projects().get_project(project_id)))


@api.put("/projects/<int:project_id>")
def update_project(project_id: int):
    project = projects().update_project(project_id, parse_body(ProjectUpdate))
    return success(dump(ProjectOut, project), message="Project updated successfully")


@api.delete("/projects/<int:project_id>")
def delete_project(project_id: int):
    projects().delete_project(project_id)
    return success({}, message="Project deleted successfully")


@api.get("/projects/<int:project_id>/statistics")
def project_statistics(project_id: int):
    return success(projects().get_project_statistics(project_id).model_dump(mode="json"))


@api.get("/projects/<int:project_id>/task-statistics")
def project_task_statistics(project_id: int):
    return success(tasks().get_task_statistics(project_id).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Tasks


@api.get("/tasks")
def list_tasks():
    project_id = query_id("project_id")
    if project_id is None:
        raise ValidationViolation(
            "project_id parameter is required", details={"project_id": "required"}
        )
    return success(dump_all(TaskOut, tasks().get_tasks_by_project(project_id)))


@api.post("/tasks")
def create_task():
    task = tasks().create_task(parse_body(TaskCreate))
    return success(dump(TaskOut, task), 201, "Task created successfully")


@api.post("/tasks/reorder")
def reorder_tasks():
    body = parse_body(ReorderTasksRequest)
    tasks().reorder_tasks(TaskOrder(task_id=item.task_id, priority=item.priority) for item in body.tasks)
    return success({}, message="Tasks reordered successfully")


@api.get("/tasks/<int:task_id>")
def get_task(task_id: int):
    return success(dump(TaskOut, tasks().get_task(task_id)))


@api.put("/tasks/<int:task_id>")
def update_task(task_id: int):
    task = tasks().update_task(task_id, parse_body(TaskUpdate))
    return success(dump(TaskOut, task), message="Task updated successfully")


@api.delete("/tasks/<int:task_id>")
def delete_task(task_id: int):
    tasks().delete_task(task_id)
    return success({}, message="Task deleted successfully")


@api.patch("/tasks/<int:task_id>/status")
def update_task_status(task_id: int):
    body = parse_body(TaskStatusUpdate)
    task = tasks().update_task_status(task_id, body.status)
    return success(dump(TaskOut, task), message="Task status updated successfully")


@api.patch("/tasks/<int:task_id>/priority")
def update_task_priority(task_id: int):
    body = parse_body(TaskPriorityUpdate)
    task = tasks().update_task_priority(task_id, body.priority)
    return success(dump(TaskOut, task), message="Task priority updated successfully")


@api.get("/tasks/<int:task_id>/subtasks")
def list_subtasks(task_id: int):
    return success(dump_all(TaskOut, tasks().get_subtasks(task_id)))


@api.get("/tasks/<int:task_id>/time-stats")
def task_time_stats(task_id: int):
    return success(time_entries().get_task_time_statistics(task_id).model_dump(mode="json"))


@api.get("/tasks/<int:task_id>/time-entries/active")
def task_active_entry(task_id: int):
    entry = time_entries().get_active_time_entry(task_id)
    return success(dump(TimeEntryOut, entry) if entry else None)


@api.post("/tasks/<int:task_id>/time-entries/stop")
def stop_task_entry(task_id: int):
    body = parse_optional_body(StopTimeEntryRequest)
    entry = time_entries().stop_time_entry(task_id, body.description)
    return success(dump(TimeEntryOut, entry), message="Time entry stopped successfully")


# ---------------------------------------------------------------------------
# Time entries


@api.get("/time-entries")
def list_time_entries():
    task_id = query_id("task_id")
    project_id = query_id("project_id")
    if task_id is not None:
        entries = time_entries().get_time_entries_by_task(task_id)
    elif project_id is not None:
        entries = time_entries().get_time_entries_by_project(project_id)
    else:
        raise ValidationViolation(
            "task_id or project_id parameter is required",
            details={"task_id": "required when project_id is absent"},
        )
    return success(dump_all(TimeEntryOut, entries))


@api.post("/time-entries")
def create_time_entry():
    entry = time_entries().create_time_entry(parse_body(TimeEntryCreate))
    return success(dump(TimeEntryOut, entry), 201, "Time entry created successfully")


@api.post("/time-entries/start")
def start_time_entry():
    body = parse_body(StartTimeEntryRequest)
    entry = time_entries().start_time_entry(body.task_id, body.description)
    return success(dump(TimeEntryOut, entry), 201, "Time entry started successfully")


@api.get("/time-entries/active")
def any_active_entry():
    entry = time_entries().get_any_active_time_entry()
    return success(dump(TimeEntryOut, entry) if entry else None)


@api.get("/time-entries/<int:entry_id>")
def get_time_entry(entry_id: int):
    return success(dump(TimeEntryOut, time_entries().get_time_entry(entry_id)))


@api.put("/time-entries/<int:entry_id>")
def update_time_entry(entry_id: int):
    entry = time_entries().update_time_entry(entry_id, parse_body(TimeEntryUpdate))
    return success(dump(TimeEntryOut, entry), message="Time entry updated successfully")


@api.delete("/time-entries/<int:entry_id>")
def delete_time_entry(entry_id: int):
    time_entries().delete_time_entry(entry_id)
    return success({}, message="Time entry deleted successfully")


@api.post("/time-entries/<int:entry_id>/stop")
def stop_time_entry(entry_id: int):
    body = parse_optional_body(StopTimeEntryRequest)
    entry = time_entries().stop_time_entry_by_id(entry_id, body.description)
    return success(dump(TimeEntryOut, entry), message="Time entry stopped successfully")


# ---------------------------------------------------------------------------
# Application factory


def create_app(
    database: Database, settings: Settings, rate_limiter: Optional[RateLimiter] = None
) -> Flask:
    """Build the Flask app around an opened database.

    The rate limiter is owned by the caller, which starts and stops its sweep thread.
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_body_bytes
    app.json.sort_keys = False
    app.extensions["focused_todo.database"] = database
    allowed_origins = set(settings.allowed_origins)

    @app.before_request
    def _before():
        g.started_at = time.perf_counter()
        if rate_limiter is not None and not rate_limiter.allow(client_ip()):
            return error("Too many requests. Please try again later.", 429, "rate_limited")
        if request.method == "OPTIONS":
            return "", 200
        return None

    @app.after_request
    def _after(response):
        response.headers.update(SECURITY_HEADERS)
        origin = request.headers.get("Origin")
        if origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            response.headers["Access-Control-Allow-Credentials"] = "true"
        elapsed_ms = (time.perf_counter() - g.get("started_at", time.perf_counter())) * 1000
        logger.info(
            "{} {} {} {:.1f}ms",
            request.method,
            request.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    @app.teardown_request
    def _close_session(exc):
        db = g.pop("db", None)
        if db is None:
            return
        if exc is not None:
            db.rollback()
        db.close()

    @app.errorhandler(FocusedTodoError)
    def _handle_domain_error(exc: FocusedTodoError):
        status = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
        )
        if status == 500:
            logger.error("Request failed", extra={"path": request.path, "error": exc.message})
            return error("Internal server error", 500, exc.code)
        return error(exc.message, status, exc.code, exc.details)

    @app.errorhandler(ValidationError)
    def _handle_validation_error(exc: ValidationError):
        details = {}
        for item in exc.errors():
            field = ".".join(str(part) for part in item["loc"]) or "body"
            details.setdefault(field, item["msg"])
        return error("Validation failed", 400, "validation_error", details)

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException):
        messages = {
            404: "Endpoint not found",
            405: "Method not allowed",
            413: "Request body too large",
        }
        status = exc.code or 500
        return error(messages.get(status, exc.description or exc.name), status)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        logger.exception("Unhandled error", extra={"path": request.path})
        return error("Internal server error", 500, "internal_error")

    app.register_blueprint(api)
    return app
