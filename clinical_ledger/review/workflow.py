"""Operation surface of the review workflow.

:class:`ReviewWorkflow` runs each operation in its own session, converts the
result into a response schema while the session is still open, and turns
:class:`~clinical_ledger.review.errors.WorkflowError` failures into
:class:`OperationResult` values. Notifications queued by the services are
dispatched only after a successful operation.
"""

from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog

from . import schemas
from .errors import WorkflowError, error_for
from .journals import JournalAggregator
from .notes import NoteLifecycleController
from .notifications import (
    EmailNotifier,
    LoggingNotifier,
    NotificationDispatcher,
    Notifier,
    PendingNotification,
)
from .permissions import Principal
from .reviews import AuditDrift, ReviewRequestService
from .service import Clock, LedgerDatabase, LedgerSettings, init_engine

__all__ = ["OperationError", "OperationResult", "ReviewWorkflow"]

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationError:
    kind: str
    message: str


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Either the value of a successful operation or the reason it failed."""

    value: Optional[T] = None
    error: Optional[OperationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the typed error that caused the failure."""
        if self.error is not None:
            raise error_for(self.error.kind, self.error.message)
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, exc: WorkflowError) -> "OperationResult[T]":
        return cls(error=OperationError(exc.kind, exc.message))


class _Services:
    """Per-operation service set sharing one session and clock."""

    def __init__(self, session, settings: LedgerSettings, clock: Clock | None):
        self.notes = NoteLifecycleController(session, settings, clock)
        self.reviews = ReviewRequestService(session, settings, clock)
        self.journals = JournalAggregator(session, settings, clock)

    def drain(self) -> list[PendingNotification]:
        return [
            *self.notes.drain_outbox(),
            *self.reviews.drain_outbox(),
            *self.journals.drain_outbox(),
        ]


class ReviewWorkflow:
    """Entry point used by the HTTP API and the CLI."""

    def __init__(
        self,
        database: LedgerDatabase,
        settings: LedgerSettings,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        self.database = database
        self.settings = settings
        self.dispatcher = dispatcher or NotificationDispatcher(
            LoggingNotifier(), enabled=settings.notifications_enabled
        )
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        *,
        notifier: Notifier | None = None,
        recipient_lookup: Callable[[uuid.UUID], Optional[str]] | None = None,
        clock: Clock | None = None,
    ) -> "ReviewWorkflow":
        """Build the engine, database and notification dispatcher from *settings*."""
        database = LedgerDatabase(init_engine(settings))
        if notifier is None:
            if settings.email_api_key and recipient_lookup is not None:
                notifier = EmailNotifier(
                    api_key=settings.email_api_key,
                    sender=settings.email_from,
                    app_url=settings.app_url,
                    recipient_lookup=recipient_lookup,
                    api_url=settings.email_api_url,
                )
            else:
                notifier = LoggingNotifier()
        executor = None
        if settings.notify_workers > 0:
            executor = ThreadPoolExecutor(
                max_workers=settings.notify_workers, thread_name_prefix="ledger-notify"
            )
        dispatcher = NotificationDispatcher(
            notifier, executor=executor, enabled=settings.notifications_enabled
        )
        return cls(database, settings, dispatcher, clock)

    def close(self) -> None:
        if self.dispatcher.executor is not None:
            self.dispatcher.executor.shutdown(wait=True)
        self.database.engine.dispose()

    def _run(self, operation: str, fn: Callable[[_Services], T]) -> OperationResult[T]:
        with self.database.session() as session:
            services = _Services(session, self.settings, self.clock)
            try:
                value = fn(services)
            except WorkflowError as exc:
                logger.info(
                    "workflow.rejected",
                    operation=operation,
                    kind=exc.kind,
                    message=exc.message,
                )
                return OperationResult.failure(exc)
            pending = services.drain()
        self.dispatcher.dispatch(pending)
        return OperationResult.success(value)

    # ========================================================================
    # Notes
    # ========================================================================

    def create_note(
        self, workspace_id: uuid.UUID, principal: Principal, request: schemas.NoteCreateRequest
    ) -> OperationResult[schemas.NoteResponse]:
        return self._run(
            "create_note",
            lambda s: _note(s.notes.create_note(workspace_id, request, principal)),
        )

    def get_note(
        self, workspace_id: uuid.UUID, principal: Principal, note_id: uuid.UUID
    ) -> OperationResult[schemas.NoteResponse]:
        return self._run("get_note", lambda s: _note(s.notes.get_note(note_id, workspace_id)))

    def update_note(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        note_id: uuid.UUID,
        request: schemas.NoteUpdateRequest,
    ) -> OperationResult[schemas.NoteResponse]:
        return self._run(
            "update_note",
            lambda s: _note(s.notes.update_note(note_id, workspace_id, request, principal)),
        )

    def list_notes(
        self, workspace_id: uuid.UUID, principal: Principal, **filters: Any
    ) -> OperationResult[schemas.NoteListResponse]:
        def run(s: _Services) -> schemas.NoteListResponse:
            notes, total = s.notes.list_notes(workspace_id, **filters)
            return schemas.NoteListResponse(notes=[_note(note) for note in notes], total=total)

        return self._run("list_notes", run)

    def publish_note(
        self, workspace_id: uuid.UUID, principal: Principal, note_id: uuid.UUID
    ) -> OperationResult[schemas.NoteResponse]:
        return self._run(
            "publish_note", lambda s: _note(s.notes.publish(note_id, workspace_id, principal))
        )

    def archive_note(
        self, workspace_id: uuid.UUID, principal: Principal, note_id: uuid.UUID
    ) -> OperationResult[schemas.NoteResponse]:
        return self._run(
            "archive_note", lambda s: _note(s.notes.archive(note_id, workspace_id, principal))
        )

    # ========================================================================
    # Reviews
    # ========================================================================

    def submit_for_review(
        self, workspace_id: uuid.UUID, principal: Principal, request: schemas.ReviewSubmitRequest
    ) -> OperationResult[schemas.ReviewRequestResponse]:
        return self._run(
            "submit_for_review",
            lambda s: _review(s.reviews.create_review_request(workspace_id, request, principal)),
        )

    def assign_reviewer(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        request_id: uuid.UUID,
        request: schemas.AssignReviewerRequest,
    ) -> OperationResult[schemas.ReviewRequestResponse]:
        return self._run(
            "assign_reviewer",
            lambda s: _review(
                s.reviews.assign_reviewer(request_id, workspace_id, request, principal)
            ),
        )

    def submit_verdict(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        request_id: uuid.UUID,
        request: schemas.VerdictRequest,
    ) -> OperationResult[schemas.ReviewRequestResponse]:
        return self._run(
            "submit_verdict",
            lambda s: _review(s.reviews.submit_verdict(request_id, workspace_id, request, principal)),
        )

    def reopen_review(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        request_id: uuid.UUID,
        note_id: uuid.UUID | None = None,
    ) -> OperationResult[schemas.ReviewRequestResponse]:
        return self._run(
            "reopen_review",
            lambda s: _review(s.reviews.reopen(request_id, workspace_id, principal, note_id)),
        )

    def add_comment(
        self, workspace_id: uuid.UUID, principal: Principal, request_id: uuid.UUID, text: str
    ) -> OperationResult[schemas.ReviewActionResponse]:
        return self._run(
            "add_comment",
            lambda s: _action(s.reviews.add_comment(request_id, workspace_id, text, principal)),
        )

    def submit_revision(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        request_id: uuid.UUID,
        summary: str | None = None,
    ) -> OperationResult[schemas.ReviewActionResponse]:
        return self._run(
            "submit_revision",
            lambda s: _action(
                s.reviews.submit_revision(request_id, workspace_id, principal, summary)
            ),
        )

    def get_review_request(
        self, workspace_id: uuid.UUID, principal: Principal, request_id: uuid.UUID
    ) -> OperationResult[schemas.ReviewRequestResponse]:
        return self._run(
            "get_review_request",
            lambda s: _review(s.reviews.get_review_request(request_id, workspace_id)),
        )

    def list_review_requests(
        self, workspace_id: uuid.UUID, principal: Principal, **filters: Any
    ) -> OperationResult[schemas.ReviewRequestListResponse]:
        def run(s: _Services) -> schemas.ReviewRequestListResponse:
            requests, total = s.reviews.list_review_requests(workspace_id, **filters)
            return schemas.ReviewRequestListResponse(
                requests=[_review(item) for item in requests], total=total
            )

        return self._run("list_review_requests", run)

    def list_assigned_reviews(
        self, workspace_id: uuid.UUID, principal: Principal, reviewer_id: uuid.UUID | None = None
    ) -> OperationResult[list[schemas.ReviewRequestResponse]]:
        reviewer = reviewer_id or principal.user_id
        return self._run(
            "list_assigned_reviews",
            lambda s: [_review(item) for item in s.reviews.list_assigned_reviews(workspace_id, reviewer)],
        )

    def list_unassigned_reviews(
        self, workspace_id: uuid.UUID, principal: Principal
    ) -> OperationResult[list[schemas.ReviewRequestResponse]]:
        return self._run(
            "list_unassigned_reviews",
            lambda s: [_review(item) for item in s.reviews.list_unassigned_reviews(workspace_id)],
        )

    def list_review_actions(
        self, workspace_id: uuid.UUID, principal: Principal, request_id: uuid.UUID
    ) -> OperationResult[list[schemas.ReviewActionResponse]]:
        return self._run(
            "list_review_actions",
            lambda s: [
                _action(entry) for entry in s.reviews.list_review_actions(request_id, workspace_id)
            ],
        )

    def verify_audit(self, workspace_id: uuid.UUID | None = None) -> list[AuditDrift]:
        """Report requests whose stored status drifted from their history."""
        with self.database.session() as session:
            return list(ReviewRequestService(session, self.settings, self.clock).verify_consistency(workspace_id))

    # ========================================================================
    # Journals
    # ========================================================================

    def generate_journal(
        self, workspace_id: uuid.UUID, principal: Principal, request: schemas.JournalGenerateRequest
    ) -> OperationResult[schemas.JournalDetailResponse]:
        return self._run(
            "generate_journal",
            lambda s: _journal_detail(
                s.journals.generate(
                    workspace_id,
                    request.period_year,
                    request.period_month,
                    principal,
                    title=request.title,
                    editorial_note=request.editorial_note,
                    recommended_only=request.recommended_only,
                )
            ),
        )

    def regenerate_journal(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        journal_id: uuid.UUID,
        recommended_only: bool | None = None,
    ) -> OperationResult[schemas.JournalDetailResponse]:
        return self._run(
            "regenerate_journal",
            lambda s: _journal_detail(
                s.journals.regenerate(
                    journal_id, workspace_id, principal, recommended_only=recommended_only
                )
            ),
        )

    def publish_journal(
        self, workspace_id: uuid.UUID, principal: Principal, journal_id: uuid.UUID
    ) -> OperationResult[schemas.JournalResponse]:
        return self._run(
            "publish_journal",
            lambda s: _journal(s.journals.publish(journal_id, workspace_id, principal)),
        )

    def archive_journal(
        self, workspace_id: uuid.UUID, principal: Principal, journal_id: uuid.UUID
    ) -> OperationResult[schemas.JournalResponse]:
        return self._run(
            "archive_journal",
            lambda s: _journal(s.journals.archive(journal_id, workspace_id, principal)),
        )

    def update_journal(
        self,
        workspace_id: uuid.UUID,
        principal: Principal,
        journal_id: uuid.UUID,
        request: schemas.JournalUpdateRequest,
    ) -> OperationResult[schemas.JournalResponse]:
        return self._run(
            "update_journal",
            lambda s: _journal(
                s.journals.update_journal(journal_id, workspace_id, request, principal)
            ),
        )

    def get_journal(
        self, workspace_id: uuid.UUID, principal: Principal, journal_id: uuid.UUID
    ) -> OperationResult[schemas.JournalDetailResponse]:
        return self._run(
            "get_journal",
            lambda s: _journal_detail(s.journals.get_journal(journal_id, workspace_id)),
        )

    def list_journals(
        self, workspace_id: uuid.UUID, principal: Principal, **filters: Any
    ) -> OperationResult[schemas.JournalListResponse]:
        def run(s: _Services) -> schemas.JournalListResponse:
            journals, total = s.journals.list_journals(workspace_id, **filters)
            return schemas.JournalListResponse(
                journals=[_journal(item) for item in journals], total=total
            )

        return self._run("list_journals", run)


def _note(note) -> schemas.NoteResponse:
    return schemas.NoteResponse.model_validate(note)


def _review(review) -> schemas.ReviewRequestResponse:
    return schemas.ReviewRequestResponse.model_validate(review)


def _action(action) -> schemas.ReviewActionResponse:
    return schemas.ReviewActionResponse.model_validate(action)


def _journal(journal) -> schemas.JournalResponse:
    return schemas.JournalResponse.model_validate(journal)


def _journal_detail(journal) -> schemas.JournalDetailResponse:
    return schemas.JournalDetailResponse.model_validate(journal)
