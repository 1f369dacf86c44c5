"""Append-only audit trail of review actions.

The ordered list of :class:`ReviewAction` rows for a request is the canonical
history; ``ReviewRequest.status`` must always equal :func:`replay_status` of
that history.
"""

from __future__ import annotations

import uuid
from typing import Any, Iterable, Iterator, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidTransition, NotFound, ValidationError
from .models import ReviewAction, ReviewRequest
from .schema.enums import ReviewActionType, ReviewStatus
from .service import Clock, utcnow

__all__ = ["AuditTrail", "ReviewActionLog", "TRANSITIONS", "replay_status"]

logger = structlog.get_logger(__name__)

_OPEN = frozenset({ReviewStatus.PENDING, ReviewStatus.IN_REVIEW})

# action -> (allowed prior statuses, resulting status). ``None`` as a prior
# status means "no history yet"; a ``None`` result leaves the status unchanged.
TRANSITIONS: Mapping[ReviewActionType, tuple[frozenset, Optional[ReviewStatus]]] = {
    ReviewActionType.SUBMITTED: (frozenset({None}), ReviewStatus.PENDING),
    ReviewActionType.ASSIGNED: (_OPEN, ReviewStatus.IN_REVIEW),
    ReviewActionType.APPROVED: (frozenset({ReviewStatus.IN_REVIEW}), ReviewStatus.APPROVED),
    ReviewActionType.REJECTED: (frozenset({ReviewStatus.IN_REVIEW}), ReviewStatus.REJECTED),
    ReviewActionType.CHANGES_REQUESTED: (
        frozenset({ReviewStatus.IN_REVIEW}),
        ReviewStatus.CHANGES_REQUESTED,
    ),
    ReviewActionType.REOPENED: (
        frozenset({ReviewStatus.REJECTED, ReviewStatus.CHANGES_REQUESTED}),
        ReviewStatus.PENDING,
    ),
    ReviewActionType.COMMENT_ADDED: (frozenset(ReviewStatus), None),
    ReviewActionType.REVISION_SUBMITTED: (_OPEN, None),
}


def apply_action(status: Optional[ReviewStatus], action: ReviewActionType) -> ReviewStatus:
    """Return the status after *action*, or raise if the move is illegal."""

    allowed, result = TRANSITIONS[action]
    if status not in allowed:
        current = status.value if status else "none"
        raise InvalidTransition(f"Cannot apply '{action.value}' to a {current} review request")
    if result is None:
        if status is None:
            raise InvalidTransition(f"'{action.value}' requires an existing review request")
        return status
    return result


def replay_status(actions: Iterable[ReviewAction | ReviewActionType]) -> Optional[ReviewStatus]:
    """Fold an ordered history into the status it implies."""

    status: Optional[ReviewStatus] = None
    for item in actions:
        action = item.action if isinstance(item, ReviewAction) else item
        status = apply_action(status, ReviewActionType(action))
    return status


class AuditTrail:
    """Lazy, restartable view over the actions of one review request.

    Each iteration issues a fresh ordered query, so a trail can be replayed
    after further actions have been appended.
    """

    def __init__(self, session: Session, request_id: uuid.UUID, workspace_id: uuid.UUID, *, batch_size: int = 200):
        self._session = session
        self.request_id = request_id
        self.workspace_id = workspace_id
        self._batch_size = batch_size

    def __iter__(self) -> Iterator[ReviewAction]:
        stmt = (
            select(ReviewAction)
            .where(
                ReviewAction.review_request_id == self.request_id,
                ReviewAction.workspace_id == self.workspace_id,
            )
            .order_by(ReviewAction.created_at.asc(), ReviewAction.id.asc())
            .execution_options(yield_per=self._batch_size)
        )
        yield from self._session.scalars(stmt)

    def actions(self) -> list[ReviewActionType]:
        return [entry.action for entry in self]

    def derived_status(self) -> Optional[ReviewStatus]:
        return replay_status(self)


class ReviewActionLog:
    """Writer/reader for review actions. There is no update or delete."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock: Clock = clock or utcnow

    def append(
        self,
        request: ReviewRequest | uuid.UUID,
        workspace_id: uuid.UUID,
        actor_id: uuid.UUID | None,
        action: ReviewActionType,
        note: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ReviewAction:
        """Record *action* inside the caller's transaction."""

        if actor_id is None:
            raise ValidationError("Review actions require an actor")
        if not isinstance(request, ReviewRequest):
            loaded = self.session.get(ReviewRequest, request)
            if loaded is None:
                raise NotFound("Review request not found")
            request = loaded
        if request.workspace_id != workspace_id:
            raise NotFound("Review request not found")

        entry = ReviewAction(
            review_request_id=request.id,
            workspace_id=workspace_id,
            actor_id=actor_id,
            action=action,
            note=note,
            meta={key: _json_safe(value) for key, value in (metadata or {}).items()},
            created_at=self.clock(),
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug(
            "audit.appended",
            request_id=str(request.id),
            action=action.value,
            actor_id=str(actor_id),
        )
        return entry

    def list(self, request_id: uuid.UUID, workspace_id: uuid.UUID) -> AuditTrail:
        return AuditTrail(self.session, request_id, workspace_id)


def _json_safe(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value
