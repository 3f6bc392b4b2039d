# ============================================================================
# mboxscope -- Report Server (mboxscope/api/server.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Creates the FastAPI application that serves the drill-down report
#   over an existing index file.
#
# USAGE:
#   mboxscope report mail.sqlite3                     # 127.0.0.1:31200
#   mboxscope report mail.sqlite3 --port 9000
#   python -m mboxscope.api.server mail.sqlite3
#
# CONCURRENCY:
#   The server never holds a shared connection. Every request opens its
#   own read-only SQLite handle (see routes.get_store), so concurrent
#   requests need no lock and the index can never be modified.
#
# INTERNET ACCESS: NONE (binds to localhost by default)
# ============================================================================

from __future__ import annotations

import argparse
import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from mboxscope import __version__
from mboxscope.core.config import Config, load_config
from mboxscope.core.exceptions import (
    IndexNotOpenableError,
    InvalidDimensionError,
    MboxScopeError,
)
from mboxscope.core.formatting import fmt_count, fmt_size
from mboxscope.core.index_store import IndexStore

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Application version
# -------------------------------------------------------------------
APP_VERSION = __version__

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")


def build_templates() -> Jinja2Templates:
    templates = Jinja2Templates(directory=TEMPLATE_DIR)
    templates.env.filters["fmt_size"] = fmt_size
    templates.env.filters["fmt_count"] = fmt_count
    return templates


# -------------------------------------------------------------------
# Create the FastAPI app
# -------------------------------------------------------------------
def create_app(index_path: str, config: Optional[Config] = None) -> FastAPI:
    """
    Build the report app for one index file.

    The index is opened once here so a wrong path fails immediately
    (IndexNotOpenableError) instead of on the first request.
    """
    if config is None:
        config = load_config(".")

    index_path = os.path.abspath(str(index_path))
    with IndexStore.open_readonly(index_path) as store:
        counts = store.counts()
    logger.info("[OK] Index %s: %d messages, %d labels",
                index_path, counts["messages"], counts["labels"])

    app = FastAPI(
        title="mboxscope report",
        description=(
            "Drill-down report over an indexed mbox archive: message counts "
            "and sizes by label, year, sender domain and sender address."
        ),
        version=APP_VERSION,
    )
    app.state.index_path = index_path
    app.state.config = config
    app.state.templates = build_templates()

    @app.exception_handler(MboxScopeError)
    async def mboxscope_error_handler(request: Request, exc: MboxScopeError):
        if isinstance(exc, InvalidDimensionError):
            status = 404
        elif isinstance(exc, IndexNotOpenableError):
            status = 503
        else:
            status = 500
            logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=status, content=exc.to_dict())

    # -------------------------------------------------------------------
    # Register routes
    # -------------------------------------------------------------------
    from mboxscope.api.routes import router

    app.include_router(router)
    return app


# -------------------------------------------------------------------
# Main entry point
# -------------------------------------------------------------------
def serve(index_path: str, config: Config, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the report server with uvicorn until Ctrl+C."""
    import uvicorn

    host = host or config.report.host
    port = int(port or config.report.port)
    app = create_app(index_path, config)

    print(f"Report for {index_path}")
    print(f"  Open http://{host}:{port}/ in your browser (Ctrl+C to stop)")
    logger.info("[OK] Starting mboxscope report on http://%s:%s", host, port)

    uvicorn.run(app, host=host, port=port, log_level="warning")


def main():
    parser = argparse.ArgumentParser(description="mboxscope report server")
    parser.add_argument("database", help="Index file written by 'mboxscope index'")
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Port number")
    args = parser.parse_args()

    serve(args.database, load_config("."), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
