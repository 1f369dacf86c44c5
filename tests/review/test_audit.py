import uuid

import pytest

from clinical_ledger.review.audit import ReviewActionLog, apply_action, replay_status
from clinical_ledger.review.errors import InvalidTransition, NotFound, ValidationError
from clinical_ledger.review.schema.enums import ReviewActionType as A
from clinical_ledger.review.schema.enums import ReviewStatus


def test_replay_of_empty_history_is_none():
    assert replay_status([]) is None


@pytest.mark.parametrize(
    "history, expected",
    [
        ([A.SUBMITTED], ReviewStatus.PENDING),
        ([A.SUBMITTED, A.ASSIGNED], ReviewStatus.IN_REVIEW),
        ([A.SUBMITTED, A.ASSIGNED, A.ASSIGNED], ReviewStatus.IN_REVIEW),
        ([A.SUBMITTED, A.ASSIGNED, A.APPROVED], ReviewStatus.APPROVED),
        ([A.SUBMITTED, A.ASSIGNED, A.REJECTED, A.REOPENED], ReviewStatus.PENDING),
        (
            [A.SUBMITTED, A.COMMENT_ADDED, A.ASSIGNED, A.REVISION_SUBMITTED, A.CHANGES_REQUESTED],
            ReviewStatus.CHANGES_REQUESTED,
        ),
        ([A.SUBMITTED, A.ASSIGNED, A.APPROVED, A.COMMENT_ADDED], ReviewStatus.APPROVED),
    ],
)
def test_replay_folds_history(history, expected):
    assert replay_status(history) == expected


@pytest.mark.parametrize(
    "history",
    [
        [A.ASSIGNED],
        [A.SUBMITTED, A.SUBMITTED],
        [A.SUBMITTED, A.APPROVED],
        [A.SUBMITTED, A.ASSIGNED, A.APPROVED, A.REOPENED],
        [A.SUBMITTED, A.ASSIGNED, A.REJECTED, A.REVISION_SUBMITTED],
        [A.COMMENT_ADDED],
    ],
)
def test_replay_rejects_illegal_sequences(history):
    with pytest.raises(InvalidTransition):
        replay_status(history)


def test_reopen_only_from_negative_verdicts():
    for status in (ReviewStatus.PENDING, ReviewStatus.IN_REVIEW, ReviewStatus.APPROVED):
        with pytest.raises(InvalidTransition):
            apply_action(status, A.REOPENED)
    assert apply_action(ReviewStatus.REJECTED, A.REOPENED) == ReviewStatus.PENDING


def test_append_validates_actor_and_request(make_note, submit, session, clock, workspace_id):
    review = submit(make_note())
    log = ReviewActionLog(session, clock)

    with pytest.raises(ValidationError):
        log.append(review, workspace_id, None, A.COMMENT_ADDED)
    with pytest.raises(NotFound):
        log.append(uuid.uuid4(), workspace_id, uuid.uuid4(), A.COMMENT_ADDED)
    with pytest.raises(NotFound):
        log.append(review.id, uuid.uuid4(), uuid.uuid4(), A.COMMENT_ADDED)
    session.rollback()


def test_trail_is_lazy_and_restartable(make_note, submit, session, clock, workspace_id, reviewer):
    review = submit(make_note())
    log = ReviewActionLog(session, clock)
    trail = log.list(review.id, workspace_id)

    assert trail.actions() == [A.SUBMITTED]

    entry = log.append(
        review.id,
        workspace_id,
        reviewer.user_id,
        A.COMMENT_ADDED,
        note="Looks complete",
        metadata={"reviewer_id": reviewer.user_id},
    )
    session.commit()

    assert entry.meta == {"reviewer_id": str(reviewer.user_id)}
    assert trail.actions() == [A.SUBMITTED, A.COMMENT_ADDED]
    assert [item.id for item in trail] == sorted(item.id for item in trail)
    assert trail.derived_status() == ReviewStatus.PENDING
