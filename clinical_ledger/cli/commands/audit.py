"""Audit trail consistency check."""

from __future__ import annotations

import uuid
from argparse import Namespace, _SubParsersAction

from clinical_ledger.review.workflow import ReviewWorkflow

from ..config import RuntimeConfig

__all__ = ["register", "run_verify"]


def register(subparsers: _SubParsersAction) -> None:
    parser = subparsers.add_parser("audit", help="Audit trail tools")
    audit_commands = parser.add_subparsers(dest="audit_command", required=True)

    verify = audit_commands.add_parser(
        "verify", help="Report review requests whose status drifted from their history"
    )
    verify.add_argument("--workspace", type=uuid.UUID, help="Limit the check to one workspace")
    verify.set_defaults(handler=run_verify)


def run_verify(args: Namespace, config: RuntimeConfig) -> int:
    workflow = ReviewWorkflow.from_settings(config.settings)
    try:
        drifts = workflow.verify_audit(getattr(args, "workspace", None))
    finally:
        workflow.close()

    for drift in drifts:
        derived = drift.derived.value if drift.derived else "invalid"
        line = f"{drift.request_id}: stored={drift.stored.value} derived={derived}"
        if drift.error:
            line += f" ({drift.error})"
        print(line)
    if drifts:
        print(f"{len(drifts)} inconsistent review request(s)")
        return 1
    print("Audit trail consistent")
    return 0
