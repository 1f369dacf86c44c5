"""Database setup commands."""

from __future__ import annotations

from argparse import Namespace, _SubParsersAction

import structlog

from clinical_ledger.review.schema.enums import render_enum_sql
from clinical_ledger.review.service import LedgerDatabase, init_engine

from ..config import RuntimeConfig

__all__ = ["register", "run_init_db", "run_render_enums"]

logger = structlog.get_logger(__name__)


def register(subparsers: _SubParsersAction) -> None:
    init_parser = subparsers.add_parser("init-db", help="Create all tables (development only)")
    init_parser.set_defaults(handler=run_init_db)

    enums_parser = subparsers.add_parser(
        "render-enums", help="Print CREATE TYPE statements for the PostgreSQL enums"
    )
    enums_parser.set_defaults(handler=run_render_enums)


def run_init_db(_: Namespace, config: RuntimeConfig) -> int:
    engine = init_engine(config.settings)
    try:
        LedgerDatabase(engine).create_all()
    finally:
        engine.dispose()
    logger.info("db.initialized", url=engine.url.render_as_string(hide_password=True))
    print("Database schema created")
    return 0


def run_render_enums(_: Namespace, config: RuntimeConfig) -> int:
    print(render_enum_sql())
    return 0
