"""Pydantic schemas for workflow API requests/responses."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .schema.enums import (
    JournalStatus,
    NoteStatus,
    ReviewActionType,
    ReviewPriority,
    ReviewStatus,
)

__all__ = [
    "NoteCreateRequest",
    "NoteUpdateRequest",
    "NoteResponse",
    "NoteListResponse",
    "ReviewSubmitRequest",
    "AssignReviewerRequest",
    "VerdictRequest",
    "ReopenRequest",
    "CommentRequest",
    "RevisionRequest",
    "ReviewRequestResponse",
    "ReviewRequestListResponse",
    "ReviewActionResponse",
    "JournalGenerateRequest",
    "JournalUpdateRequest",
    "JournalEntryResponse",
    "JournalResponse",
    "JournalDetailResponse",
    "JournalListResponse",
    "Verdict",
]

Verdict = Literal["approved", "rejected", "changes_requested"]

MAX_COMMENT_LENGTH = 2000


# ========================================================================
# Notes
# ========================================================================


class NoteCreateRequest(BaseModel):
    """Create a draft note."""

    title: str = Field(..., min_length=3, max_length=300)
    body: str = Field(..., min_length=1)
    topic: Optional[str] = Field(None, max_length=120)
    tags: list[str] = Field(default_factory=list)
    recommend_for_journal: bool = False

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        return sorted({tag.strip() for tag in value if tag and tag.strip()})


class NoteUpdateRequest(BaseModel):
    """Edit a draft note."""

    title: Optional[str] = Field(None, min_length=3, max_length=300)
    body: Optional[str] = Field(None, min_length=1)
    topic: Optional[str] = Field(None, max_length=120)
    tags: Optional[list[str]] = None
    recommend_for_journal: Optional[bool] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return sorted({tag.strip() for tag in value if tag and tag.strip()})


class NoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workspace_id: uuid.UUID
    author_id: uuid.UUID
    title: str
    body: str
    topic: Optional[str]
    tags: list[str]
    recommend_for_journal: bool
    status: NoteStatus
    published_at: Optional[dt.datetime]
    created_at: dt.datetime
    updated_at: dt.datetime


class NoteListResponse(BaseModel):
    notes: list[NoteResponse]
    total: int


# ========================================================================
# Reviews
# ========================================================================


class ReviewSubmitRequest(BaseModel):
    """Submit a note for review."""

    note_id: uuid.UUID
    reviewer_id: Optional[uuid.UUID] = None
    priority: ReviewPriority = ReviewPriority.NORMAL
    due_date: Optional[dt.date] = None


class AssignReviewerRequest(BaseModel):
    reviewer_id: uuid.UUID
    priority: Optional[ReviewPriority] = None
    due_date: Optional[dt.date] = None


class VerdictRequest(BaseModel):
    verdict: Verdict
    note_id: Optional[uuid.UUID] = None
    comment: Optional[str] = Field(None, max_length=MAX_COMMENT_LENGTH)


class ReopenRequest(BaseModel):
    note_id: Optional[uuid.UUID] = None


class CommentRequest(BaseModel):
    text: str = Field(..., max_length=MAX_COMMENT_LENGTH)


class RevisionRequest(BaseModel):
    summary: Optional[str] = Field(None, max_length=MAX_COMMENT_LENGTH)


class ReviewRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    note_id: uuid.UUID
    workspace_id: uuid.UUID
    requested_by: uuid.UUID
    reviewer_id: Optional[uuid.UUID]
    priority: ReviewPriority
    due_date: Optional[dt.date]
    status: ReviewStatus
    closed_at: Optional[dt.datetime]
    created_at: dt.datetime
    updated_at: dt.datetime


class ReviewRequestListResponse(BaseModel):
    requests: list[ReviewRequestResponse]
    total: int


class ReviewActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    review_request_id: uuid.UUID
    actor_id: uuid.UUID
    action: ReviewActionType
    note: Optional[str]
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: dt.datetime


# ========================================================================
# Journals
# ========================================================================


class JournalGenerateRequest(BaseModel):
    period_year: int = Field(..., ge=2000, le=9999)
    period_month: int = Field(..., ge=1, le=12)
    title: Optional[str] = Field(None, max_length=300)
    editorial_note: Optional[str] = None
    recommended_only: Optional[bool] = None


class JournalUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    editorial_note: Optional[str] = None


class JournalEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    note_id: uuid.UUID
    sort_order: int
    note_title: str
    note_author_id: uuid.UUID
    note_published_at: dt.datetime


class JournalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workspace_id: uuid.UUID
    title: str
    period_year: int
    period_month: int
    editorial_note: Optional[str]
    status: JournalStatus
    generated_by: uuid.UUID
    published_at: Optional[dt.datetime]
    created_at: dt.datetime
    updated_at: dt.datetime


class JournalDetailResponse(JournalResponse):
    entries: list[JournalEntryResponse]


class JournalListResponse(BaseModel):
    journals: list[JournalResponse]
    total: int
