"""HTTP server command."""

from __future__ import annotations

from argparse import Namespace, _SubParsersAction

import uvicorn

from ..config import RuntimeConfig

__all__ = ["register", "run"]


def register(subparsers: _SubParsersAction) -> None:
    parser = subparsers.add_parser("serve", help="Start the workflow API server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8082, help="Port to bind (default: 8082)")
    parser.set_defaults(handler=run)


def run(args: Namespace, config: RuntimeConfig) -> int:
    from clinical_ledger.review.api import create_app

    app = create_app(config.settings)
    host = getattr(args, "host", "127.0.0.1")
    port = int(getattr(args, "port", 8082))
    print(f"Starting Clinical Ledger API on http://{host}:{port} (docs at /docs)")
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    return 0
