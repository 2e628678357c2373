"""Error taxonomy shared by the stores and the HTTP layer."""

from __future__ import annotations

from typing import Optional


class FocusedTodoError(Exception):
    """Base class for errors raised by the application core."""

    code = "error"

    def __init__(self, message: str, details: Optional[dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(FocusedTodoError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: int | str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{entity} with ID {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ReferentialViolation(FocusedTodoError):
    """A referenced project, task or parent is missing or inconsistent."""

    code = "referential_violation"


class ValidationViolation(FocusedTodoError):
    code = "validation_error"


class BusinessRuleViolation(FocusedTodoError):
    """Temporal, duration, overlap or task-state rule was broken."""

    code = "business_rule_violation"


class ConflictError(FocusedTodoError):
    code = "conflict"


class InternalError(FocusedTodoError):
    code = "internal_error"


class MigrationError(InternalError):
    code = "migration_error"
