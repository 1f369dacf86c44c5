"""Review request manager.

Owns the :class:`ReviewRequest` entity. Every status change is applied with a
compare-and-set update and recorded through :class:`ReviewActionLog` in the
same transaction, and the matching note transition is delegated to
:class:`NoteLifecycleController`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterator, Optional

import structlog
from sqlalchemy import func, select

from . import schemas
from .audit import AuditTrail, ReviewActionLog
from .errors import Conflict, InvalidTransition, NotFound, ValidationError
from .models import ReviewRequest
from .notes import NoteLifecycleController
from .permissions import (
    Principal,
    can_assign,
    can_comment,
    can_reopen,
    can_revise,
    can_submit,
    can_verdict,
    require,
)
from .schema.enums import (
    OPEN_REVIEW_STATUSES,
    REOPENABLE_STATUSES,
    VERDICT_STATUSES,
    NoteStatus,
    ReviewActionType,
    ReviewPriority,
    ReviewStatus,
)
from .schemas import MAX_COMMENT_LENGTH
from .service import Clock, LedgerService, LedgerSettings

__all__ = ["ReviewRequestService", "AuditDrift"]

logger = structlog.get_logger(__name__)

_VERDICT_ACTIONS = {
    ReviewStatus.APPROVED: ReviewActionType.APPROVED,
    ReviewStatus.REJECTED: ReviewActionType.REJECTED,
    ReviewStatus.CHANGES_REQUESTED: ReviewActionType.CHANGES_REQUESTED,
}


@dataclass(frozen=True)
class AuditDrift:
    """A request whose stored status disagrees with its action history."""

    request_id: uuid.UUID
    workspace_id: uuid.UUID
    stored: ReviewStatus
    derived: Optional[ReviewStatus]
    error: Optional[str] = None


class ReviewRequestService(LedgerService):
    """Submission, assignment, verdict and reopen for review requests."""

    def __init__(self, session, settings: LedgerSettings, clock: Clock | None = None):
        super().__init__(session, settings, clock)
        self.audit = ReviewActionLog(session, self.clock)
        self.notes = NoteLifecycleController(session, settings, self.clock)

    # ========================================================================
    # Submission
    # ========================================================================

    def create_review_request(
        self,
        workspace_id: uuid.UUID,
        request: schemas.ReviewSubmitRequest,
        principal: Principal,
    ) -> ReviewRequest:
        """Open a review request for a draft note (``submitForReview``).

        A reviewer passed here is only nominated: the request stays
        ``pending`` until an admin or editor assigns it.
        """
        with self._transaction():
            note = self.notes._load(request.note_id, workspace_id, lock=True)
            require(can_submit(principal, note), "You cannot submit this note for review")

            existing = self._open_request_for(note.id, workspace_id)
            if existing is not None:
                raise Conflict("An open review request already exists for this note")
            if note.status != NoteStatus.DRAFT:
                raise InvalidTransition(
                    f"Only draft notes can be submitted (note is {note.status.value})"
                )

            now = self.clock()
            review = ReviewRequest(
                note_id=note.id,
                workspace_id=workspace_id,
                requested_by=principal.user_id,
                reviewer_id=request.reviewer_id,
                priority=request.priority,
                due_date=request.due_date,
                status=ReviewStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            self.session.add(review)
            self.session.flush()

            metadata = {"priority": request.priority}
            if request.reviewer_id is not None:
                metadata["nominated_reviewer_id"] = request.reviewer_id
            self.audit.append(
                review,
                workspace_id,
                principal.user_id,
                ReviewActionType.SUBMITTED,
                metadata=metadata,
            )
            self.notes.apply_review_outcome(note, NoteStatus.DRAFT, NoteStatus.UNDER_REVIEW)

        logger.info(
            "review.submitted",
            request_id=str(review.id),
            note_id=str(note.id),
            requested_by=str(principal.user_id),
        )
        self._notify_after_commit(
            review.reviewer_id,
            "review_requested",
            workspace_id=workspace_id,
            request_id=review.id,
            note_title=note.title,
        )
        return review

    # ========================================================================
    # Assignment
    # ========================================================================

    def assign_reviewer(
        self,
        request_id: uuid.UUID,
        workspace_id: uuid.UUID,
        request: schemas.AssignReviewerRequest,
        principal: Principal,
    ) -> ReviewRequest:
        """Assign (or reassign) the reviewer of an open request."""
        require(can_assign(principal), "Only admins and editors can assign reviewers")
        with self._transaction():
            review = self._load(request_id, workspace_id)
            if not review.is_open:
                raise NotFound("Open review request not found")

            previous = review.reviewer_id
            values = {
                "reviewer_id": request.reviewer_id,
                "status": ReviewStatus.IN_REVIEW,
                "updated_at": self.clock(),
            }
            if request.priority is not None:
                values["priority"] = request.priority
            if request.due_date is not None:
                values["due_date"] = request.due_date
            self._compare_and_set(review, OPEN_REVIEW_STATUSES, values, label="Review request")

            metadata = {"reviewer_id": request.reviewer_id}
            if previous is not None and previous != request.reviewer_id:
                metadata["previous_reviewer_id"] = previous
            self.audit.append(
                review,
                workspace_id,
                principal.user_id,
                ReviewActionType.ASSIGNED,
                metadata=metadata,
            )
            note_title = review.note.title

        logger.info(
            "review.assigned",
            request_id=str(request_id),
            reviewer_id=str(request.reviewer_id),
            actor_id=str(principal.user_id),
        )
        self._notify_after_commit(
            request.reviewer_id,
            "review_assigned",
            workspace_id=workspace_id,
            request_id=review.id,
            note_title=note_title,
        )
        return review

    # ========================================================================
    # Verdict
    # ========================================================================

    def submit_verdict(
        self,
        request_id: uuid.UUID,
        workspace_id: uuid.UUID,
        request: schemas.VerdictRequest,
        principal: Principal,
    ) -> ReviewRequest:
        """Close an in-review request with a verdict and move its note."""
        verdict = ReviewStatus(request.verdict)
        comment = request.comment.strip() if request.comment else None
        with self._transaction():
            review = self._load(request_id, workspace_id)
            if request.note_id is not None and request.note_id != review.note_id:
                raise ValidationError("note_id does not match the review request")
            require(
                can_verdict(principal, review),
                "Only the assigned reviewer or an admin can submit a verdict",
            )
            if review.status in VERDICT_STATUSES:
                raise Conflict(f"Review request is already {review.status.value}")
            if review.status != ReviewStatus.IN_REVIEW:
                raise InvalidTransition(
                    f"Cannot submit a verdict for a {review.status.value} review request"
                )

            now = self.clock()
            self._compare_and_set(
                review,
                ReviewStatus.IN_REVIEW,
                {"status": verdict, "closed_at": now, "updated_at": now},
                label="Review request",
            )
            self.audit.append(
                review,
                workspace_id,
                principal.user_id,
                _VERDICT_ACTIONS[verdict],
                note=comment,
            )
            note = self.notes._load(review.note_id, workspace_id, lock=True)
            # An archived note keeps its status; the request still closes.
            if note.status != NoteStatus.ARCHIVED:
                target = NoteStatus.APPROVED if verdict == ReviewStatus.APPROVED else NoteStatus.DRAFT
                self.notes.apply_review_outcome(note, NoteStatus.UNDER_REVIEW, target)

        logger.info(
            "review.verdict",
            request_id=str(request_id),
            verdict=verdict.value,
            actor_id=str(principal.user_id),
        )
        self._notify_after_commit(
            review.requested_by,
            "review_verdict",
            workspace_id=workspace_id,
            request_id=review.id,
            note_title=note.title,
            verdict=verdict.value,
            comment=comment,
        )
        return review

    # ========================================================================
    # Reopen
    # ========================================================================

    def reopen(
        self,
        request_id: uuid.UUID,
        workspace_id: uuid.UUID,
        principal: Principal,
        note_id: uuid.UUID | None = None,
    ) -> ReviewRequest:
        """Send a rejected or changes-requested request back to ``pending``."""
        with self._transaction():
            review = self._load(request_id, workspace_id)
            if note_id is not None and note_id != review.note_id:
                raise ValidationError("note_id does not match the review request")
            require(
                can_reopen(principal, review),
                "Only admins, editors or the requester can reopen this review",
            )
            if review.status not in REOPENABLE_STATUSES:
                raise InvalidTransition(
                    f"Cannot reopen a {review.status.value} review request"
                )

            note = self.notes._load(review.note_id, workspace_id, lock=True)
            other = self._open_request_for(note.id, workspace_id)
            if other is not None:
                raise Conflict("Another open review request exists for this note")
            if note.status != NoteStatus.DRAFT:
                raise Conflict(f"Note is {note.status.value}; only draft notes can be reopened")

            self._compare_and_set(
                review,
                REOPENABLE_STATUSES,
                {"status": ReviewStatus.PENDING, "closed_at": None, "updated_at": self.clock()},
                label="Review request",
            )
            self.audit.append(review, workspace_id, principal.user_id, ReviewActionType.REOPENED)
            self.notes.apply_review_outcome(note, NoteStatus.DRAFT, NoteStatus.UNDER_REVIEW)

        logger.info("review.reopened", request_id=str(request_id), actor_id=str(principal.user_id))
        self._notify_after_commit(
            review.reviewer_id,
            "review_reopened",
            workspace_id=workspace_id,
            request_id=review.id,
            note_title=note.title,
        )
        return review

    # ========================================================================
    # Comments and revisions (no status change)
    # ========================================================================

    def add_comment(
        self,
        request_id: uuid.UUID,
        workspace_id: uuid.UUID,
        text: str,
        principal: Principal,
    ):
        require(can_comment(principal), "Viewers cannot comment on reviews")
        body = (text or "").strip()
        if not body:
            raise ValidationError("Comment cannot be empty")
        if len(body) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")
        with self._transaction():
            review = self._load(request_id, workspace_id)
            action = self.audit.append(
                review, workspace_id, principal.user_id, ReviewActionType.COMMENT_ADDED, note=body
            )
        logger.info("review.comment_added", request_id=str(request_id), actor_id=str(principal.user_id))
        return action

    def submit_revision(
        self,
        request_id: uuid.UUID,
        workspace_id: uuid.UUID,
        principal: Principal,
        summary: str | None = None,
    ):
        """Record that the author revised the note while the review is open."""
        with self._transaction():
            review = self._load(request_id, workspace_id)
            require(can_revise(principal, review.note), "Only the note author can submit revisions")
            if not review.is_open:
                raise InvalidTransition(
                    f"Cannot submit a revision for a {review.status.value} review request"
                )
            action = self.audit.append(
                review,
                workspace_id,
                principal.user_id,
                ReviewActionType.REVISION_SUBMITTED,
                note=summary.strip() if summary else None,
            )
        logger.info("review.revision_submitted", request_id=str(request_id))
        return action

    # ========================================================================
    # Reads
    # ========================================================================

    def get_review_request(self, request_id: uuid.UUID, workspace_id: uuid.UUID) -> ReviewRequest:
        return self._load(request_id, workspace_id)

    def list_review_requests(
        self,
        workspace_id: uuid.UUID,
        *,
        status: Optional[ReviewStatus | str] = None,
        reviewer_id: Optional[uuid.UUID] = None,
        requested_by: Optional[uuid.UUID] = None,
        priority: Optional[ReviewPriority | str] = None,
        note_id: Optional[uuid.UUID] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> tuple[list[ReviewRequest], int]:
        offset, limit = self._page_bounds(page, per_page)
        conditions = [ReviewRequest.workspace_id == workspace_id]
        if status is not None:
            conditions.append(
                ReviewRequest.status == self._coerce(ReviewStatus, status, "review status")
            )
        if priority is not None:
            conditions.append(
                ReviewRequest.priority == self._coerce(ReviewPriority, priority, "priority")
            )
        if reviewer_id is not None:
            conditions.append(ReviewRequest.reviewer_id == reviewer_id)
        if requested_by is not None:
            conditions.append(ReviewRequest.requested_by == requested_by)
        if note_id is not None:
            conditions.append(ReviewRequest.note_id == note_id)

        total = self.session.scalar(
            select(func.count()).select_from(ReviewRequest).where(*conditions)
        )
        stmt = (
            select(ReviewRequest)
            .where(*conditions)
            .order_by(ReviewRequest.created_at.desc(), ReviewRequest.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt)), int(total or 0)

    def list_assigned_reviews(
        self, workspace_id: uuid.UUID, reviewer_id: uuid.UUID
    ) -> list[ReviewRequest]:
        """Open requests currently assigned to *reviewer_id*, oldest due first."""
        stmt = (
            select(ReviewRequest)
            .where(
                ReviewRequest.workspace_id == workspace_id,
                ReviewRequest.reviewer_id == reviewer_id,
                ReviewRequest.status == ReviewStatus.IN_REVIEW,
            )
            .order_by(ReviewRequest.due_date.is_(None), ReviewRequest.due_date, ReviewRequest.created_at)
        )
        return list(self.session.scalars(stmt))

    def list_unassigned_reviews(self, workspace_id: uuid.UUID) -> list[ReviewRequest]:
        """Pending requests waiting for an assignment, oldest first."""
        stmt = (
            select(ReviewRequest)
            .where(
                ReviewRequest.workspace_id == workspace_id,
                ReviewRequest.status == ReviewStatus.PENDING,
            )
            .order_by(ReviewRequest.created_at, ReviewRequest.id)
        )
        return list(self.session.scalars(stmt))

    def list_review_actions(self, request_id: uuid.UUID, workspace_id: uuid.UUID) -> AuditTrail:
        self._load(request_id, workspace_id)
        return self.audit.list(request_id, workspace_id)

    # ========================================================================
    # Consistency check
    # ========================================================================

    def verify_consistency(self, workspace_id: uuid.UUID | None = None) -> Iterator[AuditDrift]:
        """Yield every request whose stored status differs from its replayed history."""
        stmt = (
            select(ReviewRequest)
            .order_by(ReviewRequest.created_at, ReviewRequest.id)
            .execution_options(populate_existing=True)
        )
        if workspace_id is not None:
            stmt = stmt.where(ReviewRequest.workspace_id == workspace_id)
        for review in self.session.scalars(stmt).all():
            trail = self.audit.list(review.id, review.workspace_id)
            try:
                derived = trail.derived_status()
            except InvalidTransition as exc:
                yield AuditDrift(review.id, review.workspace_id, review.status, None, exc.message)
                continue
            if derived != review.status:
                yield AuditDrift(review.id, review.workspace_id, review.status, derived)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _load(self, request_id: uuid.UUID, workspace_id: uuid.UUID) -> ReviewRequest:
        stmt = (
            select(ReviewRequest)
            .where(ReviewRequest.id == request_id, ReviewRequest.workspace_id == workspace_id)
            .execution_options(populate_existing=True)
        )
        review = self.session.scalars(stmt).first()
        if review is None:
            raise NotFound("Review request not found")
        return review

    def _open_request_for(self, note_id: uuid.UUID, workspace_id: uuid.UUID) -> ReviewRequest | None:
        stmt = select(ReviewRequest).where(
            ReviewRequest.note_id == note_id,
            ReviewRequest.workspace_id == workspace_id,
            ReviewRequest.status.in_(tuple(OPEN_REVIEW_STATUSES)),
        )
        return self.session.scalars(stmt).first()
