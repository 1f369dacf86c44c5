import uuid
from types import SimpleNamespace

import pytest

from clinical_ledger.review import permissions
from clinical_ledger.review.errors import Forbidden
from clinical_ledger.review.permissions import Principal
from clinical_ledger.review.schema.enums import WorkspaceRole

AUTHOR = uuid.uuid4()
REVIEWER = uuid.uuid4()


def _principal(role: WorkspaceRole, user_id: uuid.UUID | None = None) -> Principal:
    return Principal(user_id or uuid.uuid4(), role)


@pytest.mark.parametrize(
    "role, own_note, expected",
    [
        (WorkspaceRole.ADMIN, False, True),
        (WorkspaceRole.EDITOR, False, True),
        (WorkspaceRole.CONTRIBUTOR, True, True),
        (WorkspaceRole.CONTRIBUTOR, False, False),
        (WorkspaceRole.VIEWER, True, False),
    ],
)
def test_can_submit(role, own_note, expected):
    note = SimpleNamespace(author_id=AUTHOR)
    principal = _principal(role, AUTHOR if own_note else None)
    assert permissions.can_submit(principal, note) is expected


def test_verdict_belongs_to_assigned_reviewer_or_admin():
    request = SimpleNamespace(reviewer_id=REVIEWER, requested_by=AUTHOR)
    assert permissions.can_verdict(_principal(WorkspaceRole.CONTRIBUTOR, REVIEWER), request)
    assert permissions.can_verdict(_principal(WorkspaceRole.ADMIN), request)
    assert not permissions.can_verdict(_principal(WorkspaceRole.EDITOR), request)

    unassigned = SimpleNamespace(reviewer_id=None, requested_by=AUTHOR)
    assert not permissions.can_verdict(_principal(WorkspaceRole.EDITOR), unassigned)


def test_reopen_and_management_roles():
    request = SimpleNamespace(reviewer_id=REVIEWER, requested_by=AUTHOR)
    assert permissions.can_reopen(_principal(WorkspaceRole.CONTRIBUTOR, AUTHOR), request)
    assert permissions.can_reopen(_principal(WorkspaceRole.EDITOR), request)
    assert not permissions.can_reopen(_principal(WorkspaceRole.CONTRIBUTOR, REVIEWER), request)

    assert permissions.can_assign(_principal(WorkspaceRole.EDITOR))
    assert not permissions.can_assign(_principal(WorkspaceRole.CONTRIBUTOR))
    assert permissions.can_publish(_principal(WorkspaceRole.ADMIN))
    assert not permissions.can_manage_journal(_principal(WorkspaceRole.VIEWER))
    assert not permissions.can_comment(_principal(WorkspaceRole.VIEWER))


def test_archive_allowed_for_author_or_manager():
    note = SimpleNamespace(author_id=AUTHOR)
    assert permissions.can_archive_note(_principal(WorkspaceRole.VIEWER, AUTHOR), note)
    assert permissions.can_archive_note(_principal(WorkspaceRole.EDITOR), note)
    assert not permissions.can_archive_note(_principal(WorkspaceRole.CONTRIBUTOR), note)


def test_require_raises_forbidden():
    permissions.require(True, "unused")
    with pytest.raises(Forbidden, match="nope"):
        permissions.require(False, "nope")
