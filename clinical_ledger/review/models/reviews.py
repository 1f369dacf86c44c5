"""Review request and review action (audit) models."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Date, ForeignKey, Index, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import (
    Base,
    JSONType,
    ReviewActionType,
    ReviewPriority,
    ReviewStatus,
    SequenceId,
    UtcDateTime,
    review_action_type_enum,
    review_priority_enum,
    review_status_enum,
)

if TYPE_CHECKING:  # pragma: no cover
    from .notes import Note

__all__ = ["ReviewRequest", "ReviewAction"]


class ReviewRequest(Base):
    """Request for a note to be reviewed.

    ``status`` is a projection of the request's :class:`ReviewAction` history
    and is only ever changed in the same transaction that appends to it.
    """

    __tablename__ = "review_requests"
    __table_args__ = (
        Index("idx_review_requests_workspace_status", "workspace_id", "status"),
        Index("idx_review_requests_note_status", "note_id", "status"),
        Index("idx_review_requests_reviewer", "workspace_id", "reviewer_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    note_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("notes.id", ondelete="RESTRICT"), nullable=False
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    requested_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    reviewer_id: Mapped[uuid.UUID | None] = mapped_column()
    priority: Mapped[ReviewPriority] = mapped_column(
        review_priority_enum(), nullable=False, default=ReviewPriority.NORMAL
    )
    due_date: Mapped[dt.date | None] = mapped_column(Date)
    status: Mapped[ReviewStatus] = mapped_column(
        review_status_enum(), nullable=False, default=ReviewStatus.PENDING
    )
    closed_at: Mapped[dt.datetime | None] = mapped_column(UtcDateTime())
    created_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )

    note: Mapped["Note"] = relationship(back_populates="review_requests")
    actions: Mapped[list["ReviewAction"]] = relationship(
        order_by=lambda: (ReviewAction.created_at, ReviewAction.id),
        viewonly=True,
    )

    @property
    def is_open(self) -> bool:
        return self.status in (ReviewStatus.PENDING, ReviewStatus.IN_REVIEW)


class ReviewAction(Base):
    """Immutable record of one action taken against a review request."""

    __tablename__ = "review_actions"
    __table_args__ = (
        Index("idx_review_actions_request", "review_request_id", "created_at", "id"),
        Index("idx_review_actions_workspace", "workspace_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(SequenceId, primary_key=True, autoincrement=True)
    review_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("review_requests.id", ondelete="RESTRICT"), nullable=False
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    action: Mapped[ReviewActionType] = mapped_column(
        review_action_type_enum(), nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(
        UtcDateTime(), server_default=func.now(), nullable=False
    )

    request: Mapped[ReviewRequest] = relationship()
