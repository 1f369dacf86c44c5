"""Best-effort notification delivery for workflow events.

Notifications are queued by the services only after their transaction has
committed and are handed to a :class:`NotificationDispatcher`. Delivery
failures are logged and never propagate back into the triggering operation.
"""

from __future__ import annotations

import json
import time
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol
from urllib import error, request

import structlog

__all__ = [
    "PendingNotification",
    "Notifier",
    "LoggingNotifier",
    "EmailNotifier",
    "NotificationDispatcher",
    "NotificationError",
]

logger = structlog.get_logger(__name__)

REDACTED_KEYS: frozenset[str] = frozenset({"token", "secret", "api_key", "password"})
MASKED_VALUE = "***"

_SUBJECTS: Dict[str, str] = {
    "review_requested": "A note is waiting for your review",
    "review_assigned": "You have been assigned a review",
    "review_verdict": "Your note has been reviewed",
    "review_reopened": "A review has been reopened",
    "note_published": "Your note has been published",
    "journal_published": "A new journal issue is available",
}


class NotificationError(RuntimeError):
    """Raised by notifiers when delivery fails."""


@dataclass(frozen=True)
class PendingNotification:
    user_id: uuid.UUID
    event_kind: str
    payload: Mapping[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def notify(self, user_id: uuid.UUID, event_kind: str, payload: Mapping[str, Any]) -> None:
        ...


def _sanitize(payload: Mapping[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in REDACTED_KEYS:
            sanitized[key] = MASKED_VALUE
        elif isinstance(value, uuid.UUID):
            sanitized[key] = str(value)
        else:
            sanitized[key] = value
    return sanitized


class LoggingNotifier:
    """Notifier that only records events in the structured log."""

    def notify(self, user_id: uuid.UUID, event_kind: str, payload: Mapping[str, Any]) -> None:
        logger.info(
            "notification.logged",
            user_id=str(user_id),
            event_kind=event_kind,
            payload=_sanitize(payload),
        )


class EmailNotifier:
    """Send plain-text emails through an HTTP email API (Resend compatible)."""

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        app_url: str,
        recipient_lookup: Callable[[uuid.UUID], Optional[str]],
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._app_url = app_url.rstrip("/")
        self._recipient_lookup = recipient_lookup
        self._api_url = api_url
        self._timeout = timeout

    def notify(self, user_id: uuid.UUID, event_kind: str, payload: Mapping[str, Any]) -> None:
        recipient = self._recipient_lookup(user_id)
        if not recipient:
            logger.warning("notification.no_recipient", user_id=str(user_id), event_kind=event_kind)
            return
        message = {
            "from": self._sender,
            "to": recipient,
            "subject": _SUBJECTS.get(event_kind, "Clinical Ledger update"),
            "text": self.render_text(event_kind, payload),
        }
        self._post(message)

    def render_text(self, event_kind: str, payload: Mapping[str, Any]) -> str:
        lines = [_SUBJECTS.get(event_kind, "Clinical Ledger update"), ""]
        title = payload.get("note_title") or payload.get("journal_title")
        if title:
            lines.append(f"Title: {title}")
        verdict = payload.get("verdict")
        if verdict:
            lines.append(f"Outcome: {str(verdict).replace('_', ' ')}")
        comment = payload.get("comment")
        if comment:
            lines.append(f"Comment: {comment}")
        workspace_id = payload.get("workspace_id")
        request_id = payload.get("request_id")
        if workspace_id and request_id:
            lines.extend(["", f"{self._app_url}/{workspace_id}/review/{request_id}"])
        return "\n".join(lines).strip()

    def _post(self, message: Mapping[str, Any]) -> None:
        body = json.dumps(message).encode("utf-8")
        req = request.Request(
            self._api_url,
            data=body,
            method="POST",
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        start_time = time.perf_counter()
        try:
            with request.urlopen(req, timeout=self._timeout) as resp:
                status = getattr(resp, "status", 200)
                if status >= 400:
                    raise NotificationError(f"Email API returned status={status}")
        except error.URLError as exc:
            raise NotificationError(f"Email API request failed: {exc}") from exc
        logger.debug(
            "notification.email_sent",
            to=message.get("to"),
            duration=time.perf_counter() - start_time,
        )


class NotificationDispatcher:
    """Deliver pending notifications without ever failing the caller."""

    def __init__(
        self,
        notifier: Notifier,
        *,
        executor: Executor | None = None,
        enabled: bool = True,
    ) -> None:
        self.notifier = notifier
        self.executor = executor
        self.enabled = enabled

    def dispatch(self, notifications: Iterable[PendingNotification]) -> None:
        if not self.enabled:
            return
        for item in notifications:
            if self.executor is None:
                self._deliver(item)
                continue
            try:
                self.executor.submit(self._deliver, item)
            except Exception as exc:
                # Pool shut down or saturated; deliver on the calling thread.
                logger.warning(
                    "notification.failed",
                    user_id=str(item.user_id),
                    event_kind=item.event_kind,
                    error=repr(exc),
                    stage="submit",
                )
                self._deliver(item)

    def _deliver(self, item: PendingNotification) -> None:
        try:
            self.notifier.notify(item.user_id, item.event_kind, item.payload)
        except Exception as exc:
            logger.warning(
                "notification.failed",
                user_id=str(item.user_id),
                event_kind=item.event_kind,
                error=repr(exc),
            )
