"""Shared fixtures: a temporary SQLite ledger, a controllable clock and principals."""

from __future__ import annotations

import datetime as dt
import uuid
from pathlib import Path
from typing import Any, Mapping

import pytest

from clinical_ledger.review import schemas
from clinical_ledger.review.journals import JournalAggregator
from clinical_ledger.review.notes import NoteLifecycleController
from clinical_ledger.review.notifications import NotificationDispatcher
from clinical_ledger.review.permissions import Principal
from clinical_ledger.review.reviews import ReviewRequestService
from clinical_ledger.review.schema.enums import WorkspaceRole
from clinical_ledger.review.service import LedgerDatabase, LedgerSettings, init_engine
from clinical_ledger.review.workflow import ReviewWorkflow

UTC = dt.timezone.utc


class FakeClock:
    """Clock that advances one second on every read."""

    def __init__(self, start: dt.datetime = dt.datetime(2024, 5, 1, 9, 0, tzinfo=UTC)):
        self.now = start

    def __call__(self) -> dt.datetime:
        current = self.now
        self.now = current + dt.timedelta(seconds=1)
        return current

    def set(self, value: dt.datetime) -> None:
        self.now = value


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[uuid.UUID, str, dict[str, Any]]] = []

    def notify(self, user_id: uuid.UUID, event_kind: str, payload: Mapping[str, Any]) -> None:
        self.sent.append((user_id, event_kind, dict(payload)))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]


@pytest.fixture()
def settings(tmp_path: Path) -> LedgerSettings:
    return LedgerSettings(
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        notify_workers=0,
    )


@pytest.fixture()
def database(settings: LedgerSettings):
    engine = init_engine(settings)
    db = LedgerDatabase(engine)
    db.create_all()
    yield db
    engine.dispose()


@pytest.fixture()
def session(database: LedgerDatabase):
    session = database.session()
    yield session
    session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def workspace_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def admin() -> Principal:
    return Principal(uuid.uuid4(), WorkspaceRole.ADMIN)


@pytest.fixture()
def editor() -> Principal:
    return Principal(uuid.uuid4(), WorkspaceRole.EDITOR)


@pytest.fixture()
def author() -> Principal:
    return Principal(uuid.uuid4(), WorkspaceRole.CONTRIBUTOR)


@pytest.fixture()
def reviewer() -> Principal:
    return Principal(uuid.uuid4(), WorkspaceRole.CONTRIBUTOR)


@pytest.fixture()
def viewer() -> Principal:
    return Principal(uuid.uuid4(), WorkspaceRole.VIEWER)


@pytest.fixture()
def notes(session, settings, clock) -> NoteLifecycleController:
    return NoteLifecycleController(session, settings, clock)


@pytest.fixture()
def reviews(session, settings, clock) -> ReviewRequestService:
    return ReviewRequestService(session, settings, clock)


@pytest.fixture()
def journals(session, settings, clock) -> JournalAggregator:
    return JournalAggregator(session, settings, clock)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def workflow(database, settings, clock, notifier) -> ReviewWorkflow:
    dispatcher = NotificationDispatcher(notifier)
    return ReviewWorkflow(database, settings, dispatcher, clock)


@pytest.fixture()
def make_note(notes, workspace_id, author):
    def _make(title: str = "Atypical presentation of sepsis", principal: Principal | None = None, **extra):
        request = schemas.NoteCreateRequest(title=title, body="Case body", **extra)
        return notes.create_note(workspace_id, request, principal or author)

    return _make


@pytest.fixture()
def submit(reviews, workspace_id, author):
    def _submit(note, principal: Principal | None = None, **extra):
        request = schemas.ReviewSubmitRequest(note_id=note.id, **extra)
        return reviews.create_review_request(workspace_id, request, principal or author)

    return _submit


@pytest.fixture()
def assign(reviews, workspace_id, editor, reviewer):
    def _assign(review, reviewer_id: uuid.UUID | None = None, principal: Principal | None = None, **extra):
        request = schemas.AssignReviewerRequest(reviewer_id=reviewer_id or reviewer.user_id, **extra)
        return reviews.assign_reviewer(review.id, workspace_id, request, principal or editor)

    return _assign


@pytest.fixture()
def verdict(reviews, workspace_id, reviewer):
    def _verdict(review, outcome: str, principal: Principal | None = None, **extra):
        request = schemas.VerdictRequest(verdict=outcome, **extra)
        return reviews.submit_verdict(review.id, workspace_id, request, principal or reviewer)

    return _verdict
