"""Journal generation command, intended to be scheduled monthly."""

from __future__ import annotations

import datetime as dt
import uuid
from argparse import Namespace, _SubParsersAction

import structlog
from pydantic import ValidationError as PydanticValidationError

from clinical_ledger.review.journals import previous_period
from clinical_ledger.review.permissions import Principal
from clinical_ledger.review.schema.enums import WorkspaceRole
from clinical_ledger.review.schemas import JournalGenerateRequest
from clinical_ledger.review.workflow import ReviewWorkflow

from ..config import RuntimeConfig

__all__ = ["register", "run_generate"]

logger = structlog.get_logger(__name__)


def register(subparsers: _SubParsersAction) -> None:
    parser = subparsers.add_parser("journal", help="Journal maintenance")
    journal_commands = parser.add_subparsers(dest="journal_command", required=True)

    generate = journal_commands.add_parser(
        "generate", help="Generate the journal for a month (default: previous month)"
    )
    generate.add_argument("--workspace", type=uuid.UUID, required=True)
    generate.add_argument(
        "--actor",
        type=uuid.UUID,
        required=True,
        help="User id recorded as the journal's generator (acts as an editor)",
    )
    generate.add_argument("--year", type=int)
    generate.add_argument("--month", type=int)
    generate.add_argument("--title")
    generate.add_argument(
        "--recommended-only",
        dest="recommended_only",
        action="store_true",
        default=None,
        help="Only include notes flagged for journal recommendation",
    )
    generate.set_defaults(handler=run_generate)


def run_generate(args: Namespace, config: RuntimeConfig) -> int:
    year, month = args.year, args.month
    if year is None or month is None:
        default_year, default_month = previous_period(dt.datetime.now(dt.timezone.utc).date())
        year = year if year is not None else default_year
        month = month if month is not None else default_month

    try:
        request = JournalGenerateRequest(
            period_year=year,
            period_month=month,
            title=args.title,
            recommended_only=args.recommended_only,
        )
    except PydanticValidationError as exc:
        print(f"error (validation_error): {exc.errors()[0]['msg']}")
        return 2

    principal = Principal(args.actor, WorkspaceRole.EDITOR)
    workflow = ReviewWorkflow.from_settings(config.settings)
    try:
        result = workflow.generate_journal(args.workspace, principal, request)
    finally:
        workflow.close()

    if not result.ok:
        print(f"error ({result.error.kind}): {result.error.message}")
        return 1
    journal = result.value
    logger.info("journal.cli_generated", journal_id=str(journal.id), entries=len(journal.entries))
    print(f"Generated {journal.title} ({journal.id}) with {len(journal.entries)} entries")
    return 0
