"""Journal aggregator.

Compiles the notes published in a calendar month into a :class:`Journal`.
Generation runs in two phases: the journal row is committed in
``generating`` first, then the entry snapshot and the move to ``draft``
happen together in a second transaction. If the second phase fails the
journal stays in ``generating`` with no entries and can be regenerated.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from . import schemas
from .errors import Conflict, InvalidTransition, NotFound, ValidationError
from .models import Journal, JournalEntry, Note
from .permissions import Principal, can_manage_journal, require
from .schema.enums import JournalStatus, NoteStatus
from .service import LedgerService

__all__ = ["JournalAggregator", "period_bounds", "previous_period"]

logger = structlog.get_logger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 9999
_REGENERATABLE = frozenset({JournalStatus.GENERATING, JournalStatus.DRAFT})


def period_bounds(year: int, month: int) -> tuple[dt.datetime, dt.datetime]:
    """Return the UTC ``[start, end)`` window of a calendar month."""

    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"year must be between {MIN_YEAR} and {MAX_YEAR}")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    start = dt.datetime(year, month, 1, tzinfo=dt.timezone.utc)
    if month == 12:
        end = dt.datetime(year + 1, 1, 1, tzinfo=dt.timezone.utc)
    else:
        end = dt.datetime(year, month + 1, 1, tzinfo=dt.timezone.utc)
    return start, end


def previous_period(today: dt.date) -> tuple[int, int]:
    """Year and month of the calendar month before *today*."""

    if today.month == 1:
        return today.year - 1, 12
    return today.year, today.month - 1


def default_title(year: int, month: int) -> str:
    return f"Clinical Journal {dt.date(year, month, 1):%B %Y}"


class JournalAggregator(LedgerService):
    """Generate, curate and publish monthly journals."""

    def generate(
        self,
        workspace_id: uuid.UUID,
        year: int,
        month: int,
        principal: Principal,
        *,
        title: Optional[str] = None,
        editorial_note: Optional[str] = None,
        recommended_only: Optional[bool] = None,
    ) -> Journal:
        """Create the journal for ``year``/``month`` and snapshot its notes."""
        require(can_manage_journal(principal), "Only admins and editors can generate journals")
        period_bounds(year, month)
        if recommended_only is None:
            recommended_only = self.settings.journal_recommended_only

        now = self.clock()
        try:
            with self._transaction():
                if self._active_for_period(workspace_id, year, month) is not None:
                    raise Conflict(f"A journal for {year}-{month:02d} already exists")
                journal = Journal(
                    workspace_id=workspace_id,
                    title=(title or "").strip() or default_title(year, month),
                    period_year=year,
                    period_month=month,
                    editorial_note=editorial_note,
                    status=JournalStatus.GENERATING,
                    generated_by=principal.user_id,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(journal)
                self.session.flush()
        except IntegrityError as exc:
            raise Conflict(f"A journal for {year}-{month:02d} already exists") from exc
        logger.info(
            "journal.generating",
            journal_id=str(journal.id),
            workspace_id=str(workspace_id),
            period=f"{year}-{month:02d}",
        )

        try:
            with self._transaction():
                count = self._snapshot(journal, principal.user_id, recommended_only)
                self._compare_and_set(
                    journal,
                    JournalStatus.GENERATING,
                    {"status": JournalStatus.DRAFT, "updated_at": self.clock()},
                    label="Journal",
                )
        except Exception:
            logger.exception("journal.generation_failed", journal_id=str(journal.id))
            raise

        logger.info("journal.generated", journal_id=str(journal.id), entries=count)
        return journal

    def regenerate(
        self,
        journal_id: uuid.UUID,
        workspace_id: uuid.UUID,
        principal: Principal,
        *,
        recommended_only: Optional[bool] = None,
    ) -> Journal:
        """Replace the entry snapshot of a generating or draft journal."""
        require(can_manage_journal(principal), "Only admins and editors can regenerate journals")
        if recommended_only is None:
            recommended_only = self.settings.journal_recommended_only
        with self._transaction():
            journal = self._load(journal_id, workspace_id)
            if journal.status not in _REGENERATABLE:
                raise InvalidTransition(f"Cannot regenerate a {journal.status.value} journal")
            count = self._snapshot(journal, principal.user_id, recommended_only)
            self._compare_and_set(
                journal,
                _REGENERATABLE,
                {"status": JournalStatus.DRAFT, "updated_at": self.clock()},
                label="Journal",
            )
        logger.info("journal.regenerated", journal_id=str(journal_id), entries=count)
        return journal

    def publish(self, journal_id: uuid.UUID, workspace_id: uuid.UUID, principal: Principal) -> Journal:
        require(can_manage_journal(principal), "Only admins and editors can publish journals")
        with self._transaction():
            journal = self._load(journal_id, workspace_id)
            if journal.status != JournalStatus.DRAFT:
                raise InvalidTransition(
                    f"Only draft journals can be published (journal is {journal.status.value})"
                )
            now = self.clock()
            self._compare_and_set(
                journal,
                JournalStatus.DRAFT,
                {"status": JournalStatus.PUBLISHED, "published_at": now, "updated_at": now},
                label="Journal",
            )
            authors = {entry.note_author_id for entry in journal.entries}
        logger.info("journal.published", journal_id=str(journal_id), actor_id=str(principal.user_id))
        for author_id in sorted(authors, key=str):
            self._notify_after_commit(
                author_id,
                "journal_published",
                workspace_id=workspace_id,
                journal_id=journal.id,
                journal_title=journal.title,
            )
        return journal

    def archive(self, journal_id: uuid.UUID, workspace_id: uuid.UUID, principal: Principal) -> Journal:
        """Archive a journal, freeing its period for a new one."""
        require(can_manage_journal(principal), "Only admins and editors can archive journals")
        with self._transaction():
            journal = self._load(journal_id, workspace_id)
            if journal.status == JournalStatus.ARCHIVED:
                raise InvalidTransition("Journal is already archived")
            self._compare_and_set(
                journal,
                journal.status,
                {"status": JournalStatus.ARCHIVED, "updated_at": self.clock()},
                label="Journal",
            )
        logger.info("journal.archived", journal_id=str(journal_id), actor_id=str(principal.user_id))
        return journal

    def update_journal(
        self,
        journal_id: uuid.UUID,
        workspace_id: uuid.UUID,
        request: schemas.JournalUpdateRequest,
        principal: Principal,
    ) -> Journal:
        require(can_manage_journal(principal), "Only admins and editors can edit journals")
        with self._transaction():
            journal = self._load(journal_id, workspace_id)
            if journal.status != JournalStatus.DRAFT:
                raise InvalidTransition(
                    f"Only draft journals can be edited (journal is {journal.status.value})"
                )
            if request.title is not None:
                journal.title = request.title.strip()
            if request.editorial_note is not None:
                journal.editorial_note = request.editorial_note or None
            journal.updated_at = self.clock()
        return journal

    # ========================================================================
    # Reads
    # ========================================================================

    def get_journal(self, journal_id: uuid.UUID, workspace_id: uuid.UUID) -> Journal:
        return self._load(journal_id, workspace_id)

    def list_journals(
        self,
        workspace_id: uuid.UUID,
        *,
        status: Optional[JournalStatus | str] = None,
        year: Optional[int] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> tuple[list[Journal], int]:
        offset, limit = self._page_bounds(page, per_page)
        conditions = [Journal.workspace_id == workspace_id]
        if status is not None:
            conditions.append(Journal.status == self._coerce(JournalStatus, status, "journal status"))
        if year is not None:
            conditions.append(Journal.period_year == year)

        total = self.session.scalar(select(func.count()).select_from(Journal).where(*conditions))
        stmt = (
            select(Journal)
            .where(*conditions)
            .order_by(
                Journal.period_year.desc(),
                Journal.period_month.desc(),
                Journal.created_at.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt)), int(total or 0)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _snapshot(self, journal: Journal, actor_id: uuid.UUID, recommended_only: bool) -> int:
        start, end = period_bounds(journal.period_year, journal.period_month)
        conditions = [
            Note.workspace_id == journal.workspace_id,
            Note.status == NoteStatus.PUBLISHED,
            Note.published_at >= start,
            Note.published_at < end,
        ]
        if recommended_only:
            conditions.append(Note.recommend_for_journal.is_(True))
        notes = self.session.scalars(
            select(Note).where(*conditions).order_by(Note.published_at, Note.id)
        ).all()

        # Old rows must be gone before the new ones hit uq_journal_entries_note.
        journal.entries.clear()
        self.session.flush()

        now = self.clock()
        for position, note in enumerate(notes, start=1):
            journal.entries.append(
                JournalEntry(
                    note_id=note.id,
                    workspace_id=journal.workspace_id,
                    sort_order=position,
                    note_title=note.title,
                    note_author_id=note.author_id,
                    note_published_at=note.published_at,
                    added_by=actor_id,
                    created_at=now,
                )
            )
        self.session.flush()
        return len(notes)

    def _active_for_period(self, workspace_id: uuid.UUID, year: int, month: int) -> Journal | None:
        stmt = select(Journal).where(
            Journal.workspace_id == workspace_id,
            Journal.period_year == year,
            Journal.period_month == month,
            Journal.status != JournalStatus.ARCHIVED,
        )
        return self.session.scalars(stmt).first()

    def _load(self, journal_id: uuid.UUID, workspace_id: uuid.UUID) -> Journal:
        stmt = (
            select(Journal)
            .where(Journal.id == journal_id, Journal.workspace_id == workspace_id)
            .execution_options(populate_existing=True)
        )
        journal = self.session.scalars(stmt).first()
        if journal is None:
            raise NotFound("Journal not found")
        return journal
