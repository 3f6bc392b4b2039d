# ============================================================================
# mboxscope -- Command Line (mboxscope/cli.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   The `mboxscope` command with two subcommands:
#
#     mboxscope index  MBOX DB        build an index from a Takeout mbox
#     mboxscope report DB [--host H] [--port P]
#                                     serve the drill-down report
#
#   Paths can also come from config (paths.mbox / paths.database) or the
#   MBOXSCOPE_MBOX / MBOXSCOPE_DB environment variables.
#
# EXIT CODES:
#   0  success
#   1  fatal error (message + suggested fix printed to stderr)
#   130 interrupted with Ctrl+C (partial index kept)
# ============================================================================

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from mboxscope import __version__
from mboxscope.core.config import Config, ensure_directories, load_config, validate_config
from mboxscope.core.exceptions import ConfigError, InputNotReadableError, MboxScopeError
from mboxscope.monitoring.logger import get_app_logger, initialize_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mboxscope",
        description="Index a Gmail Takeout mbox archive and explore it by label, year, domain and sender.",
    )
    parser.add_argument("--version", action="version", version=f"mboxscope {__version__}")
    parser.add_argument(
        "--config-dir",
        default=".",
        help="Folder containing config/default_config.yaml (default: current folder)",
    )
    sub = parser.add_subparsers(dest="command")

    p_index = sub.add_parser("index", help="Build an index from an mbox archive")
    p_index.add_argument("mbox", nargs="?", default=None, help="Path to the .mbox file")
    p_index.add_argument("database", nargs="?", default=None, help="Index file to write")

    p_report = sub.add_parser("report", help="Serve the drill-down report for an index")
    p_report.add_argument("database", nargs="?", default=None, help="Index file to read")
    p_report.add_argument("--host", default=None, help="Bind address (default from config)")
    p_report.add_argument("--port", type=int, default=None, help="Port (default from config)")

    return parser


def _load(config_dir: str) -> Config:
    config = load_config(config_dir)
    problems = validate_config(config)
    if problems:
        raise ConfigError(problems=problems)
    ensure_directories(config)
    initialize_logging(config.logging.log_dir)
    return config


def cmd_index(args, config: Config) -> int:
    from mboxscope.core.index_store import IndexStore
    from mboxscope.core.ingest import Ingestor
    from mboxscope.parsers.mbox_framer import MboxFramer

    mbox = args.mbox or config.paths.mbox
    database = args.database or config.paths.database
    if not mbox:
        raise InputNotReadableError("No mbox archive given.")
    if not database:
        raise ConfigError(problems=["No index path given (argument or paths.database)."])

    # Unreadable archive fails here, before the index file is touched
    MboxFramer(mbox)

    with IndexStore.create(database) as store:
        Ingestor(config, store).ingest(mbox)

    print(f"\nIndex written to {database}")
    print(f"Run 'mboxscope report {database}' to explore it.")
    return 0


def cmd_report(args, config: Config) -> int:
    from mboxscope.api.server import serve

    database = args.database or config.paths.database
    if not database:
        raise ConfigError(problems=["No index path given (argument or paths.database)."])

    serve(database, config, host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    config = None
    try:
        config = _load(args.config_dir)
        if args.command == "index":
            return cmd_index(args, config)
        return cmd_report(args, config)
    except MboxScopeError as e:
        print(f"ERROR [{e.error_code}]: {e}", file=sys.stderr)
        if e.fix_suggestion:
            print(f"  Fix: {e.fix_suggestion}", file=sys.stderr)
        if config is not None:
            get_app_logger("cli").error("command_failed", command=args.command, **e.to_dict())
        return 1
    except KeyboardInterrupt:
        print("\nStopped.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
