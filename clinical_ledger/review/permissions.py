"""Role capabilities for workspace principals.

The identity collaborator resolves the caller into a :class:`Principal` for
the workspace being acted on; everything here is a pure predicate over that
principal and the entity involved.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from .errors import Forbidden
from .models import Note, ReviewRequest
from .schema.enums import WorkspaceRole

__all__ = [
    "Principal",
    "can_submit",
    "can_assign",
    "can_verdict",
    "can_reopen",
    "can_comment",
    "can_revise",
    "can_edit_note",
    "can_publish",
    "can_archive_note",
    "can_manage_journal",
    "require",
]

_MANAGERS = frozenset({WorkspaceRole.ADMIN, WorkspaceRole.EDITOR})
_AUTHORS = frozenset({WorkspaceRole.ADMIN, WorkspaceRole.EDITOR, WorkspaceRole.CONTRIBUTOR})


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller and their role in the current workspace."""

    user_id: uuid.UUID
    role: WorkspaceRole

    @property
    def is_manager(self) -> bool:
        return self.role in _MANAGERS


def can_submit(principal: Principal, note: Note) -> bool:
    if principal.is_manager:
        return True
    return principal.role in _AUTHORS and note.author_id == principal.user_id


def can_assign(principal: Principal) -> bool:
    return principal.is_manager


def can_verdict(principal: Principal, request: ReviewRequest) -> bool:
    if principal.role == WorkspaceRole.ADMIN:
        return True
    return request.reviewer_id is not None and request.reviewer_id == principal.user_id


def can_reopen(principal: Principal, request: ReviewRequest) -> bool:
    return principal.is_manager or request.requested_by == principal.user_id


def can_comment(principal: Principal) -> bool:
    return principal.role in _AUTHORS


def can_revise(principal: Principal, note: Note) -> bool:
    return note.author_id == principal.user_id or principal.is_manager


def can_edit_note(principal: Principal, note: Note) -> bool:
    if principal.is_manager:
        return True
    return principal.role in _AUTHORS and note.author_id == principal.user_id


def can_publish(principal: Principal) -> bool:
    return principal.is_manager


def can_archive_note(principal: Principal, note: Note) -> bool:
    return principal.is_manager or note.author_id == principal.user_id


def can_manage_journal(principal: Principal) -> bool:
    return principal.is_manager


def require(allowed: bool, message: str) -> None:
    """Raise :class:`Forbidden` unless *allowed*."""

    if not allowed:
        raise Forbidden(message)
