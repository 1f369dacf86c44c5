"""Canonical enum definitions for the review workflow."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

__all__ = [
    "EnumDefinition",
    "WorkspaceRole",
    "NoteStatus",
    "ReviewStatus",
    "ReviewPriority",
    "ReviewActionType",
    "JournalStatus",
    "OPEN_REVIEW_STATUSES",
    "VERDICT_STATUSES",
    "REOPENABLE_STATUSES",
    "ENUM_DEFINITIONS",
    "ENUM_DEFINITION_BY_NAME",
    "render_enum_sql",
    "sql_enum",
]


class LedgerEnum(str, Enum):
    """Base class for enums persisted by value."""

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(item.value for item in cls)


class WorkspaceRole(LedgerEnum):
    ADMIN = "admin"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


class NoteStatus(LedgerEnum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ReviewStatus(LedgerEnum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"


class ReviewPriority(LedgerEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReviewActionType(LedgerEnum):
    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"
    COMMENT_ADDED = "comment_added"
    REVISION_SUBMITTED = "revision_submitted"
    REOPENED = "reopened"


class JournalStatus(LedgerEnum):
    GENERATING = "generating"
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


OPEN_REVIEW_STATUSES: frozenset[ReviewStatus] = frozenset(
    {ReviewStatus.PENDING, ReviewStatus.IN_REVIEW}
)
VERDICT_STATUSES: frozenset[ReviewStatus] = frozenset(
    {ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.CHANGES_REQUESTED}
)
REOPENABLE_STATUSES: frozenset[ReviewStatus] = frozenset(
    {ReviewStatus.REJECTED, ReviewStatus.CHANGES_REQUESTED}
)


@dataclass(frozen=True)
class EnumDefinition:
    """Metadata describing a PostgreSQL enum type."""

    name: str
    values: tuple[str, ...]
    enum_cls: type[LedgerEnum]

    def render_sql(self) -> str:
        values_sql = ",".join(f"'{value}'" for value in self.values)
        return (
            "DO $$ BEGIN\n"
            f"  CREATE TYPE {self.name} AS ENUM ({values_sql});\n"
            "EXCEPTION WHEN duplicate_object THEN NULL; END $$;"
        )


ENUM_DEFINITIONS: tuple[EnumDefinition, ...] = (
    EnumDefinition("workspace_role", WorkspaceRole.values(), WorkspaceRole),
    EnumDefinition("note_status", NoteStatus.values(), NoteStatus),
    EnumDefinition("review_status", ReviewStatus.values(), ReviewStatus),
    EnumDefinition("review_priority", ReviewPriority.values(), ReviewPriority),
    EnumDefinition("review_action_type", ReviewActionType.values(), ReviewActionType),
    EnumDefinition("journal_status", JournalStatus.values(), JournalStatus),
)

ENUM_DEFINITION_BY_NAME: Mapping[str, EnumDefinition] = {
    definition.name: definition for definition in ENUM_DEFINITIONS
}

ENUM_DEFINITION_BY_CLASS: Mapping[type[LedgerEnum], EnumDefinition] = {
    definition.enum_cls: definition for definition in ENUM_DEFINITIONS
}


def render_enum_sql() -> str:
    """Return ``CREATE TYPE`` statements for all workflow enums."""

    return "\n\n".join(definition.render_sql() for definition in ENUM_DEFINITIONS)


def sql_enum(enum_cls: type[LedgerEnum]):
    """Return a SQLAlchemy ``Enum`` tied to the canonical definition.

    Values (not member names) are stored so rows stay readable from SQL.
    """

    from sqlalchemy import Enum as SqlEnum

    definition = ENUM_DEFINITION_BY_CLASS[enum_cls]
    return SqlEnum(
        enum_cls,
        name=definition.name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
