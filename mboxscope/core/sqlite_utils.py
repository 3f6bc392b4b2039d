"""
mboxscope/core/sqlite_utils.py

===========================================================
PURPOSE
===========================================================

SQLite tuning ("PRAGMA") settings and connection helpers for the
index file.

Two kinds of connection exist:
- the single WRITER used by ingestion (one per run)
- READ-ONLY connections used by the report server (one per request)

===========================================================
WHAT IS A PRAGMA?
===========================================================

A PRAGMA is a special SQLite command that changes how SQLite behaves.
Think of these as "database engine settings".
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def apply_sqlite_pragmas(conn: sqlite3.Connection) -> None:
    """
    Apply settings for the ingestion writer.

    These settings help:
    - bulk insert speed during a multi-gigabyte scan
    - readers opening the index while ingestion is still running
    """

    # WAL journaling lets report readers open the file during ingestion
    conn.execute("PRAGMA journal_mode=WAL;")

    # NORMAL = committed batches survive a process crash
    conn.execute("PRAGMA synchronous=NORMAL;")

    # temp tables/operations in RAM (GROUP BY sorts during reporting)
    conn.execute("PRAGMA temp_store=MEMORY;")

    # cache_size negative means KB; -64000 ~= 64MB cache
    conn.execute("PRAGMA cache_size=-64000;")

    # Keep relational integrity on
    conn.execute("PRAGMA foreign_keys=ON;")

    # Wait briefly if DB is busy rather than immediately failing
    conn.execute("PRAGMA busy_timeout=5000;")


def apply_reader_pragmas(conn: sqlite3.Connection) -> None:
    """Settings for read-only report connections."""
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA busy_timeout=5000;")


def connect_readonly(db_path: str) -> sqlite3.Connection:
    """
    Open an existing SQLite file read-only.

    Uses a file: URI with mode=ro so SQLite never creates an empty
    database when the path is wrong. check_same_thread=False because
    FastAPI may run a sync endpoint on a different worker thread than
    the one that opened the connection; each connection is still used
    by one request at a time.
    """
    uri = Path(db_path).resolve().as_uri() + "?mode=ro"
    conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
    apply_reader_pragmas(conn)
    return conn
