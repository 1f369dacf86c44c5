"""Typed failures raised by the review workflow.

Every error carries a stable ``kind`` used at the operation boundary and an
HTTP status used by the API layer. Workspace-scoping failures are always
reported as :class:`NotFound` so existence never leaks across workspaces.
"""

from __future__ import annotations

__all__ = [
    "WorkflowError",
    "ValidationError",
    "NotFound",
    "Forbidden",
    "InvalidTransition",
    "Conflict",
    "ERRORS_BY_KIND",
    "error_for",
]


class WorkflowError(Exception):
    """Base class for recoverable workflow failures."""

    kind = "workflow_error"
    http_status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError, ValueError):
    kind = "validation_error"
    http_status = 400


class NotFound(WorkflowError, LookupError):
    kind = "not_found"
    http_status = 404


class Forbidden(WorkflowError, PermissionError):
    kind = "forbidden"
    http_status = 403


class InvalidTransition(WorkflowError):
    kind = "invalid_transition"
    http_status = 409


class Conflict(WorkflowError):
    kind = "conflict"
    http_status = 409


ERRORS_BY_KIND: dict[str, type[WorkflowError]] = {
    cls.kind: cls for cls in (ValidationError, NotFound, Forbidden, InvalidTransition, Conflict)
}


def error_for(kind: str, message: str) -> WorkflowError:
    """Rebuild the typed error for a failure ``kind``."""

    return ERRORS_BY_KIND.get(kind, WorkflowError)(message)
