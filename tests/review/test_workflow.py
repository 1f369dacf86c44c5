import dataclasses
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from clinical_ledger.review import schemas
from clinical_ledger.review.errors import Conflict
from clinical_ledger.review.notifications import EmailNotifier, LoggingNotifier, NotificationDispatcher
from clinical_ledger.review.schema.enums import (
    JournalStatus,
    NoteStatus,
    ReviewActionType,
    ReviewStatus,
)
from clinical_ledger.review.workflow import OperationResult, ReviewWorkflow


def _draft(workflow, workspace_id, author, title="Case of recurrent syncope"):
    return workflow.create_note(
        workspace_id, author, schemas.NoteCreateRequest(title=title, body="History and findings")
    ).unwrap()


def test_end_to_end_publication(workflow, notifier, workspace_id, author, editor, reviewer):
    note = _draft(workflow, workspace_id, author)
    assert note.status == NoteStatus.DRAFT

    review = workflow.submit_for_review(
        workspace_id, author, schemas.ReviewSubmitRequest(note_id=note.id)
    ).unwrap()
    assert review.status == ReviewStatus.PENDING

    workflow.assign_reviewer(
        workspace_id,
        editor,
        review.id,
        schemas.AssignReviewerRequest(reviewer_id=reviewer.user_id),
    ).unwrap()
    closed = workflow.submit_verdict(
        workspace_id, reviewer, review.id, schemas.VerdictRequest(verdict="approved")
    ).unwrap()
    assert closed.status == ReviewStatus.APPROVED

    published = workflow.publish_note(workspace_id, editor, note.id).unwrap()
    assert published.status == NoteStatus.PUBLISHED

    journal = workflow.generate_journal(
        workspace_id,
        editor,
        schemas.JournalGenerateRequest(period_year=2024, period_month=5),
    ).unwrap()
    assert journal.status == JournalStatus.DRAFT
    assert [entry.note_id for entry in journal.entries] == [note.id]

    actions = workflow.list_review_actions(workspace_id, editor, review.id).unwrap()
    assert [item.action for item in actions] == [
        ReviewActionType.SUBMITTED,
        ReviewActionType.ASSIGNED,
        ReviewActionType.APPROVED,
    ]
    assert actions[1].metadata == {"reviewer_id": str(reviewer.user_id)}

    assert notifier.kinds() == ["review_assigned", "review_verdict", "note_published"]
    assert workflow.verify_audit(workspace_id) == []


def test_failures_become_operation_errors(workflow, notifier, workspace_id, author):
    note = _draft(workflow, workspace_id, author)
    request = schemas.ReviewSubmitRequest(note_id=note.id, reviewer_id=uuid.uuid4())
    assert workflow.submit_for_review(workspace_id, author, request).ok
    sent_before = list(notifier.sent)

    result = workflow.submit_for_review(workspace_id, author, request)

    assert isinstance(result, OperationResult)
    assert not result.ok
    assert result.error.kind == "conflict"
    assert result.value is None
    assert notifier.sent == sent_before
    with pytest.raises(Conflict):
        result.unwrap()


@pytest.mark.parametrize(
    "operation, kind",
    [
        ("get_note", "not_found"),
        ("publish_note", "not_found"),
        ("get_journal", "not_found"),
        ("get_review_request", "not_found"),
    ],
)
def test_unknown_ids_are_not_found(workflow, workspace_id, editor, operation, kind):
    result = getattr(workflow, operation)(workspace_id, editor, uuid.uuid4())
    assert result.error.kind == kind


def test_comment_validation_surfaces_kind(workflow, workspace_id, author, reviewer):
    note = _draft(workflow, workspace_id, author)
    review = workflow.submit_for_review(
        workspace_id, author, schemas.ReviewSubmitRequest(note_id=note.id)
    ).unwrap()

    result = workflow.add_comment(workspace_id, reviewer, review.id, "   ")

    assert result.error.kind == "validation_error"


def test_reads_are_paginated(workflow, workspace_id, author, editor):
    for index in range(3):
        note = _draft(workflow, workspace_id, author, title=f"Case number {index}")
        workflow.submit_for_review(
            workspace_id, author, schemas.ReviewSubmitRequest(note_id=note.id)
        ).unwrap()

    listing = workflow.list_review_requests(workspace_id, editor, per_page=2).unwrap()
    assert listing.total == 3
    assert len(listing.requests) == 2
    assert len(workflow.list_unassigned_reviews(workspace_id, editor).unwrap()) == 3

    notes = workflow.list_notes(workspace_id, author, status="under_review").unwrap()
    assert notes.total == 3

    journals = workflow.list_journals(workspace_id, editor).unwrap()
    assert journals.total == 0


def test_from_settings_picks_notifier(settings):
    logging_only = ReviewWorkflow.from_settings(settings)
    try:
        assert isinstance(logging_only.dispatcher.notifier, LoggingNotifier)
        assert logging_only.dispatcher.executor is None
    finally:
        logging_only.close()

    email_settings = dataclasses.replace(settings, email_api_key="secret", notify_workers=1)
    emailing = ReviewWorkflow.from_settings(
        email_settings, recipient_lookup=lambda user_id: "doc@example.org"
    )
    try:
        assert isinstance(emailing.dispatcher.notifier, EmailNotifier)
        assert emailing.dispatcher.executor is not None
    finally:
        emailing.close()


def test_committed_operation_survives_closed_notification_pool(
    database, settings, clock, notifier, workspace_id, author, reviewer
):
    executor = ThreadPoolExecutor(max_workers=1)
    executor.shutdown()
    workflow = ReviewWorkflow(
        database, settings, NotificationDispatcher(notifier, executor=executor), clock
    )
    note = _draft(workflow, workspace_id, author)

    result = workflow.submit_for_review(
        workspace_id,
        author,
        schemas.ReviewSubmitRequest(note_id=note.id, reviewer_id=reviewer.user_id),
    )

    assert result.ok
    assert result.value.status == ReviewStatus.PENDING
    assert workflow.get_note(workspace_id, author, note.id).unwrap().status == NoteStatus.UNDER_REVIEW
    assert notifier.kinds() == ["review_requested"]
