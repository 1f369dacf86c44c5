"""Review and publication workflow for clinical case notes."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    # Models
    "Base",
    "Note",
    "ReviewRequest",
    "ReviewAction",
    "Journal",
    "JournalEntry",
    # Services
    "LedgerSettings",
    "LedgerDatabase",
    "init_engine",
    "NoteLifecycleController",
    "ReviewRequestService",
    "JournalAggregator",
    "ReviewActionLog",
    "Principal",
    # Operation surface
    "ReviewWorkflow",
    "OperationResult",
    "create_app",
]

_LOCATIONS = {
    "Base": ".models",
    "Note": ".models",
    "ReviewRequest": ".models",
    "ReviewAction": ".models",
    "Journal": ".models",
    "JournalEntry": ".models",
    "LedgerSettings": ".service",
    "LedgerDatabase": ".service",
    "init_engine": ".service",
    "NoteLifecycleController": ".notes",
    "ReviewRequestService": ".reviews",
    "JournalAggregator": ".journals",
    "ReviewActionLog": ".audit",
    "Principal": ".permissions",
    "ReviewWorkflow": ".workflow",
    "OperationResult": ".workflow",
    "create_app": ".api",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - thin import shim
    location = _LOCATIONS.get(name)
    if location is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(import_module(location, __name__), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:  # pragma: no cover - introspection helper
    return sorted(__all__ + ["schema"])
