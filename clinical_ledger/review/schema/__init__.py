"""Schema helpers shared between ORM models and migrations."""

from .enums import (
    ENUM_DEFINITION_BY_NAME,
    ENUM_DEFINITIONS,
    OPEN_REVIEW_STATUSES,
    REOPENABLE_STATUSES,
    VERDICT_STATUSES,
    EnumDefinition,
    JournalStatus,
    NoteStatus,
    ReviewActionType,
    ReviewPriority,
    ReviewStatus,
    WorkspaceRole,
    render_enum_sql,
    sql_enum,
)

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
