"""Clinical note model."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, NoteStatus, UtcDateTime, note_status_enum

if TYPE_CHECKING:  # pragma: no cover
    from .reviews import ReviewRequest

__all__ = ["Note"]


class Note(Base):
    """Clinical case note authored inside a workspace."""

    __tablename__ = "notes"
    __table_args__ = (
        Index("idx_notes_workspace_status", "workspace_id", "status"),
        Index("idx_notes_workspace_published", "workspace_id", "published_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    author_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str | None] = mapped_column(String(120))
    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    recommend_for_journal: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    status: Mapped[NoteStatus] = mapped_column(
        note_status_enum(), nullable=False, default=NoteStatus.DRAFT
    )
    published_at: Mapped[dt.datetime | None] = mapped_column(UtcDateTime())
    created_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )

    review_requests: Mapped[list["ReviewRequest"]] = relationship(
        back_populates="note", order_by="ReviewRequest.created_at"
    )
