import datetime as dt
import uuid

import pytest

from clinical_ledger.review import schemas
from clinical_ledger.review.errors import Conflict, Forbidden, InvalidTransition, NotFound
from clinical_ledger.review.permissions import Principal
from clinical_ledger.review.schema.enums import NoteStatus, ReviewActionType, ReviewStatus, WorkspaceRole


def _approved_note(make_note, submit, assign, verdict):
    note = make_note()
    review = submit(note)
    assign(review)
    verdict(review, "approved")
    return note, review


def test_create_note_defaults(make_note, author, workspace_id):
    note = make_note(tags=["sepsis", " icu ", "sepsis", ""], topic="Infectious disease")

    assert note.status == NoteStatus.DRAFT
    assert note.author_id == author.user_id
    assert note.workspace_id == workspace_id
    assert note.tags == ["icu", "sepsis"]
    assert note.published_at is None
    assert note.recommend_for_journal is False


def test_viewer_cannot_create_note(notes, workspace_id, viewer):
    request = schemas.NoteCreateRequest(title="Viewer note", body="Body")
    with pytest.raises(Forbidden):
        notes.create_note(workspace_id, request, viewer)


def test_update_only_while_draft(make_note, submit, notes, workspace_id, author, editor):
    note = make_note()

    updated = notes.update_note(
        note.id,
        workspace_id,
        schemas.NoteUpdateRequest(title="Revised title", recommend_for_journal=True),
        author,
    )
    assert updated.title == "Revised title"
    assert updated.recommend_for_journal is True

    other = Principal(uuid.uuid4(), WorkspaceRole.CONTRIBUTOR)
    with pytest.raises(Forbidden):
        notes.update_note(note.id, workspace_id, schemas.NoteUpdateRequest(body="x"), other)

    submit(note)
    with pytest.raises(InvalidTransition):
        notes.update_note(note.id, workspace_id, schemas.NoteUpdateRequest(body="x"), editor)


def test_publish_requires_approved(make_note, notes, workspace_id, editor):
    note = make_note()
    with pytest.raises(InvalidTransition):
        notes.publish(note.id, workspace_id, editor)


def test_publish_requires_manager(make_note, submit, assign, verdict, notes, workspace_id, author):
    note, _ = _approved_note(make_note, submit, assign, verdict)
    with pytest.raises(Forbidden):
        notes.publish(note.id, workspace_id, author)


def test_publish_stamps_time_after_approval(
    make_note, submit, assign, verdict, notes, reviews, workspace_id, editor, author, clock
):
    note, review = _approved_note(make_note, submit, assign, verdict)
    clock.set(dt.datetime(2024, 5, 20, 12, 0, tzinfo=dt.timezone.utc))

    published = notes.publish(note.id, workspace_id, editor)

    assert published.status == NoteStatus.PUBLISHED
    assert published.published_at == dt.datetime(2024, 5, 20, 12, 0, tzinfo=dt.timezone.utc)
    approvals = [
        entry
        for entry in reviews.list_review_actions(review.id, workspace_id)
        if entry.action == ReviewActionType.APPROVED
    ]
    assert approvals and approvals[0].created_at < published.published_at
    assert [(item.user_id, item.event_kind) for item in notes.outbox] == [
        (author.user_id, "note_published")
    ]


def test_archive_is_one_way(make_note, notes, workspace_id, author, editor):
    note = make_note()

    archived = notes.archive(note.id, workspace_id, author)
    assert archived.status == NoteStatus.ARCHIVED

    with pytest.raises(InvalidTransition):
        notes.archive(note.id, workspace_id, editor)


def test_archive_permissions(make_note, notes, workspace_id, reviewer):
    note = make_note()
    with pytest.raises(Forbidden):
        notes.archive(note.id, workspace_id, reviewer)


def test_verdict_closes_request_for_archived_note(
    make_note, submit, assign, verdict, notes, reviews, workspace_id, author, editor
):
    note = make_note()
    review = submit(note)
    assign(review)
    notes.archive(note.id, workspace_id, author)

    closed = verdict(review, "rejected", comment="Withdrawn by author")

    assert closed.status == ReviewStatus.REJECTED
    assert closed.closed_at is not None
    assert notes.get_note(note.id, workspace_id).status == NoteStatus.ARCHIVED
    assert reviews.list_assigned_reviews(workspace_id, closed.reviewer_id) == []
    assert [item.action for item in reviews.list_review_actions(review.id, workspace_id)][-1] == (
        ReviewActionType.REJECTED
    )
    assert list(reviews.verify_consistency(workspace_id)) == []

    with pytest.raises(Conflict):
        reviews.reopen(review.id, workspace_id, editor)


def test_archived_note_rejects_direct_review_outcome(make_note, notes, session, workspace_id, author):
    note = make_note()
    notes.archive(note.id, workspace_id, author)
    with pytest.raises(InvalidTransition):
        notes.apply_review_outcome(note, NoteStatus.UNDER_REVIEW, NoteStatus.APPROVED)
    session.rollback()


def test_review_outcome_guard_reports_conflict(make_note, notes, session, workspace_id):
    note = make_note()
    with pytest.raises(Conflict):
        notes.apply_review_outcome(note, NoteStatus.UNDER_REVIEW, NoteStatus.APPROVED)
    session.rollback()


def test_notes_are_workspace_scoped(make_note, notes):
    note = make_note()
    with pytest.raises(NotFound):
        notes.get_note(note.id, uuid.uuid4())


def test_list_notes_filters(make_note, submit, notes, workspace_id, author, editor):
    first = make_note(title="First case")
    make_note(title="Second case")
    make_note(title="Editor case", principal=editor)
    submit(first)

    drafts, total = notes.list_notes(workspace_id, status=NoteStatus.DRAFT)
    assert total == 2

    mine, total = notes.list_notes(workspace_id, author_id=author.user_id)
    assert total == 2
    assert {note.author_id for note in mine} == {author.user_id}

    under_review, _ = notes.list_notes(workspace_id, status="under_review")
    assert [note.id for note in under_review] == [first.id]
