"""Settings, engine setup and the shared base for workflow services."""

from __future__ import annotations

import datetime as dt
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, TypeVar

import structlog
from sqlalchemy import create_engine, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from .errors import Conflict, ValidationError
from .models import Base
from .notifications import PendingNotification

__all__ = [
    "LedgerSettings",
    "LedgerDatabase",
    "LedgerService",
    "Clock",
    "init_engine",
    "utcnow",
]

logger = structlog.get_logger(__name__)

Clock = Callable[[], dt.datetime]
EnumT = TypeVar("EnumT")

_TRUE_VALUES = {"1", "true", "yes", "on"}
DEFAULT_EMAIL_FROM = "Clinical Ledger <noreply@clinical-ledger.local>"
DEFAULT_APP_URL = "http://localhost:3000"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


@dataclass(slots=True)
class LedgerSettings:
    """Runtime configuration for the review workflow."""

    database_url: str
    notifications_enabled: bool = True
    notify_workers: int = 2
    email_api_key: Optional[str] = None
    email_api_url: str = "https://api.resend.com/emails"
    email_from: str = DEFAULT_EMAIL_FROM
    app_url: str = DEFAULT_APP_URL
    journal_recommended_only: bool = False
    default_page_size: int = 20
    max_page_size: int = 100

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        database_url = (
            os.getenv("CLINICAL_LEDGER_DB_URL")
            or os.getenv("DATABASE_URL")
            or "sqlite+pysqlite:///./clinical_ledger.db"
        )
        return cls(
            database_url=database_url,
            notifications_enabled=_env_flag("CLINICAL_LEDGER_NOTIFY", "true"),
            notify_workers=int(os.getenv("CLINICAL_LEDGER_NOTIFY_WORKERS", "2")),
            email_api_key=os.getenv("RESEND_API_KEY") or None,
            email_from=os.getenv("EMAIL_FROM", DEFAULT_EMAIL_FROM),
            app_url=os.getenv("APP_URL", DEFAULT_APP_URL),
            journal_recommended_only=_env_flag(
                "CLINICAL_LEDGER_JOURNAL_RECOMMENDED_ONLY", "false"
            ),
            default_page_size=int(os.getenv("CLINICAL_LEDGER_PAGE_SIZE", "20")),
        )


def init_engine(settings: LedgerSettings) -> Engine:
    """Create an SQLAlchemy engine with sensible defaults."""

    database_url = settings.database_url
    if database_url.startswith("postgres://"):
        database_url = "postgresql+psycopg://" + database_url[len("postgres://") :]
    elif database_url.startswith("postgresql://") and "+psycopg" not in database_url:
        database_url = database_url.replace("postgresql://", "postgresql+psycopg://", 1)

    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url.rstrip("/").endswith(":"):
            from sqlalchemy.pool import StaticPool

            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 20
    return create_engine(database_url, **engine_kwargs)


class LedgerDatabase:
    """Session factory wrapper."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def session(self) -> Session:
        return self._session_factory()

    def create_all(self) -> None:
        """Create all tables (development only)."""
        Base.metadata.create_all(self.engine)


class LedgerService:
    """Shared plumbing for the workflow services.

    Mutating operations run inside :meth:`_transaction`; notifications are only
    queued on :attr:`outbox` once that transaction has committed.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        clock: Clock | None = None,
    ):
        self.session = session
        self.settings = settings
        self.clock: Clock = clock or utcnow
        self.outbox: list[PendingNotification] = []

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _notify_after_commit(
        self, user_id: uuid.UUID | None, event_kind: str, **payload: Any
    ) -> None:
        if user_id is None:
            return
        self.outbox.append(PendingNotification(user_id, event_kind, payload))

    def drain_outbox(self) -> list[PendingNotification]:
        pending, self.outbox = self.outbox, []
        return pending

    def _compare_and_set(
        self,
        instance: Any,
        expected: Any,
        values: dict[str, Any],
        *,
        label: str,
    ) -> None:
        """Apply *values* to *instance* only if its stored status is still *expected*.

        The guard runs as a single ``UPDATE ... WHERE status IN (...)``; a
        concurrent writer that got there first leaves zero matching rows.
        """

        model = type(instance)
        if isinstance(expected, (set, frozenset, tuple)):
            expected_values = tuple(expected)
        else:
            expected_values = (expected,)
        stmt = (
            update(model)
            .where(
                model.id == instance.id,
                model.workspace_id == instance.workspace_id,
                model.status.in_(expected_values),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            logger.info("workflow.stale_write", entity=label, row_id=str(instance.id))
            raise Conflict(f"{label} was modified concurrently; reload and retry")
        for key, value in values.items():
            set_committed_value(instance, key, value)

    def _page_bounds(self, page: int, per_page: Optional[int]) -> tuple[int, int]:
        if page < 1:
            raise ValidationError("page must be >= 1")
        size = per_page or self.settings.default_page_size
        if size < 1 or size > self.settings.max_page_size:
            raise ValidationError(
                f"page size must be between 1 and {self.settings.max_page_size}"
            )
        return (page - 1) * size, size

    @staticmethod
    def _coerce(enum_cls: type[EnumT], value: Any, field: str) -> EnumT:
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)  # type: ignore[call-arg]
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)  # type: ignore[attr-defined]
            raise ValidationError(f"Invalid {field} {value!r}; expected one of: {allowed}") from None
