"""Note lifecycle controller.

Owns ``Note.status``. The only direct transitions exposed here are the two
forward actions, publish and archive; review-driven moves go through
:meth:`NoteLifecycleController.apply_review_outcome`, which is called by the
review request manager inside its own transaction.
"""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

import structlog
from sqlalchemy import func, select

from . import schemas
from .errors import Conflict, InvalidTransition, NotFound
from .models import Note
from .permissions import (
    Principal,
    can_archive_note,
    can_edit_note,
    can_publish,
    require,
)
from .schema.enums import NoteStatus, WorkspaceRole
from .service import LedgerService

__all__ = ["NoteLifecycleController"]

logger = structlog.get_logger(__name__)


class NoteLifecycleController(LedgerService):
    """Note authoring glue plus the publish/archive state transitions."""

    # ========================================================================
    # Reads
    # ========================================================================

    def get_note(self, note_id: uuid.UUID, workspace_id: uuid.UUID) -> Note:
        return self._load(note_id, workspace_id)

    def get_status(self, note_id: uuid.UUID, workspace_id: uuid.UUID) -> NoteStatus:
        return self._load(note_id, workspace_id).status

    def list_notes(
        self,
        workspace_id: uuid.UUID,
        *,
        status: Optional[NoteStatus | str] = None,
        author_id: Optional[uuid.UUID] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> tuple[list[Note], int]:
        offset, limit = self._page_bounds(page, per_page)
        conditions = [Note.workspace_id == workspace_id]
        if status is not None:
            conditions.append(Note.status == self._coerce(NoteStatus, status, "note status"))
        if author_id is not None:
            conditions.append(Note.author_id == author_id)

        total = self.session.scalar(select(func.count()).select_from(Note).where(*conditions))
        stmt = (
            select(Note)
            .where(*conditions)
            .order_by(Note.updated_at.desc(), Note.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt)), int(total or 0)

    # ========================================================================
    # Authoring
    # ========================================================================

    def create_note(
        self,
        workspace_id: uuid.UUID,
        request: schemas.NoteCreateRequest,
        principal: Principal,
    ) -> Note:
        """Create a draft note owned by *principal*."""
        require(
            principal.role != WorkspaceRole.VIEWER,
            "Viewers cannot author notes",
        )
        now = self.clock()
        with self._transaction():
            note = Note(
                workspace_id=workspace_id,
                author_id=principal.user_id,
                title=request.title.strip(),
                body=request.body,
                topic=request.topic,
                tags=list(request.tags),
                recommend_for_journal=request.recommend_for_journal,
                status=NoteStatus.DRAFT,
                created_at=now,
                updated_at=now,
            )
            self.session.add(note)
            self.session.flush()
        logger.info("note.created", note_id=str(note.id), workspace_id=str(workspace_id))
        return note

    def update_note(
        self,
        note_id: uuid.UUID,
        workspace_id: uuid.UUID,
        request: schemas.NoteUpdateRequest,
        principal: Principal,
    ) -> Note:
        """Edit a note's content while it is still a draft."""
        with self._transaction():
            note = self._load(note_id, workspace_id)
            require(can_edit_note(principal, note), "Only the author or an editor can edit this note")
            if note.status != NoteStatus.DRAFT:
                raise InvalidTransition(
                    f"Only draft notes can be edited (note is {note.status.value})"
                )
            if request.title is not None:
                note.title = request.title.strip()
            if request.body is not None:
                note.body = request.body
            if request.topic is not None:
                note.topic = request.topic or None
            if request.tags is not None:
                note.tags = list(request.tags)
            if request.recommend_for_journal is not None:
                note.recommend_for_journal = request.recommend_for_journal
            note.updated_at = self.clock()
        return note

    # ========================================================================
    # Forward transitions
    # ========================================================================

    def publish(self, note_id: uuid.UUID, workspace_id: uuid.UUID, principal: Principal) -> Note:
        """Publish an approved note and stamp ``published_at``."""
        require(can_publish(principal), "Only admins and editors can publish notes")
        with self._transaction():
            note = self._load(note_id, workspace_id)
            if note.status != NoteStatus.APPROVED:
                raise InvalidTransition(
                    f"Only approved notes can be published (note is {note.status.value})"
                )
            now = self.clock()
            self._compare_and_set(
                note,
                NoteStatus.APPROVED,
                {"status": NoteStatus.PUBLISHED, "published_at": now, "updated_at": now},
                label="Note",
            )
        logger.info("note.published", note_id=str(note_id), actor_id=str(principal.user_id))
        self._notify_after_commit(
            note.author_id,
            "note_published",
            workspace_id=workspace_id,
            note_id=note.id,
            note_title=note.title,
        )
        return note

    def archive(self, note_id: uuid.UUID, workspace_id: uuid.UUID, principal: Principal) -> Note:
        """Archive a note. Archiving is one-way."""
        with self._transaction():
            note = self._load(note_id, workspace_id)
            require(
                can_archive_note(principal, note),
                "Only the author, admins and editors can archive this note",
            )
            if note.status == NoteStatus.ARCHIVED:
                raise InvalidTransition("Note is already archived")
            self._compare_and_set(
                note,
                note.status,
                {"status": NoteStatus.ARCHIVED, "updated_at": self.clock()},
                label="Note",
            )
        logger.info("note.archived", note_id=str(note_id), actor_id=str(principal.user_id))
        return note

    # ========================================================================
    # Review-driven transitions (no commit; caller owns the transaction)
    # ========================================================================

    def apply_review_outcome(
        self,
        note: Note,
        expected: NoteStatus | Iterable[NoteStatus],
        target: NoteStatus,
    ) -> None:
        if isinstance(expected, NoteStatus):
            expected_set = frozenset({expected})
        else:
            expected_set = frozenset(expected)
        if note.status not in expected_set:
            if note.status == NoteStatus.ARCHIVED:
                raise InvalidTransition("Note is archived")
            raise Conflict(
                f"Note is {note.status.value}; expected "
                + " or ".join(sorted(status.value for status in expected_set))
            )
        self._compare_and_set(
            note,
            expected_set,
            {"status": target, "updated_at": self.clock()},
            label="Note",
        )

    def _load(self, note_id: uuid.UUID, workspace_id: uuid.UUID, *, lock: bool = False) -> Note:
        stmt = (
            select(Note)
            .where(Note.id == note_id, Note.workspace_id == workspace_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        note = self.session.scalars(stmt).first()
        if note is None:
            raise NotFound("Note not found")
        return note
