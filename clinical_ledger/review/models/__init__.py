"""Workflow SQLAlchemy models organized by domain."""

from .base import Base
from .journals import Journal, JournalEntry
from .notes import Note
from .reviews import ReviewAction, ReviewRequest

__all__ = [
    "Base",
    "Note",
    "ReviewRequest",
    "ReviewAction",
    "Journal",
    "JournalEntry",
]
