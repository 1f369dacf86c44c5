"""Journal and journal entry models."""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JournalStatus, UtcDateTime, journal_status_enum

__all__ = ["Journal", "JournalEntry"]

_NOT_ARCHIVED = text("status <> 'archived'")


class Journal(Base):
    """Monthly compilation of published notes for a workspace."""

    __tablename__ = "journals"
    __table_args__ = (
        Index(
            "uq_journals_active_period",
            "workspace_id",
            "period_year",
            "period_month",
            unique=True,
            postgresql_where=_NOT_ARCHIVED,
            sqlite_where=_NOT_ARCHIVED,
        ),
        Index("idx_journals_workspace_period", "workspace_id", "period_year", "period_month"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    editorial_note: Mapped[str | None] = mapped_column(Text)
    status: Mapped[JournalStatus] = mapped_column(
        journal_status_enum(), nullable=False, default=JournalStatus.GENERATING
    )
    generated_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    published_at: Mapped[dt.datetime | None] = mapped_column(UtcDateTime())
    created_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )

    entries: Mapped[list["JournalEntry"]] = relationship(
        back_populates="journal",
        order_by="JournalEntry.sort_order",
        cascade="all, delete-orphan",
    )


class JournalEntry(Base):
    """Snapshot of a note selected into a journal at generation time."""

    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("journal_id", "note_id", name="uq_journal_entries_note"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    journal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("journals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    note_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("notes.id"), nullable=False)
    workspace_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    note_title: Mapped[str] = mapped_column(String(300), nullable=False)
    note_author_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    note_published_at: Mapped[dt.datetime] = mapped_column(UtcDateTime(), nullable=False)
    added_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )

    journal: Mapped[Journal] = relationship(back_populates="entries")
