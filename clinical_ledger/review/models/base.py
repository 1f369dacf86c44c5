"""Shared SQLAlchemy base, column types and enum helpers for workflow models."""

from __future__ import annotations

import datetime as dt

from sqlalchemy import JSON, BigInteger, DateTime, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from ..schema.enums import (
    JournalStatus,
    NoteStatus,
    ReviewActionType,
    ReviewPriority,
    ReviewStatus,
    sql_enum,
)

__all__ = [
    "Base",
    "JSONType",
    "SequenceId",
    "UtcDateTime",
    "note_status_enum",
    "review_status_enum",
    "review_priority_enum",
    "review_action_type_enum",
    "journal_status_enum",
]


class Base(DeclarativeBase):
    """Declarative base class shared by all workflow models."""


JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER primary keys.
SequenceId = BigInteger().with_variant(Integer(), "sqlite")


class UtcDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)


# Enum helper factories -----------------------------------------------------

def note_status_enum():
    """Return a configured enum column type for ``note_status``."""

    return sql_enum(NoteStatus)


def review_status_enum():
    """Return a configured enum column type for ``review_status``."""

    return sql_enum(ReviewStatus)


def review_priority_enum():
    """Return a configured enum column type for ``review_priority``."""

    return sql_enum(ReviewPriority)


def review_action_type_enum():
    """Return a configured enum column type for ``review_action_type``."""

    return sql_enum(ReviewActionType)


def journal_status_enum():
    """Return a configured enum column type for ``journal_status``."""

    return sql_enum(JournalStatus)
