"""Command registrations for the clinical ledger CLI."""

from __future__ import annotations

from argparse import _SubParsersAction

from . import audit, db, journal, serve

__all__ = ["register"]


def register(subparsers: _SubParsersAction) -> None:
    """Register all CLI commands with *subparsers*."""

    db.register(subparsers)
    journal.register(subparsers)
    audit.register(subparsers)
    serve.register(subparsers)
