# ============================================================================
# mboxscope -- Index Store (mboxscope/core/index_store.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Owns the SQLite index file: schema, the ingestion write path, and
#   read-only handles for the report server. It is the ONLY code that
#   writes SQL against the index (the aggregation engine only reads).
#
# TABLES:
#   messages        one row per indexed email
#   labels          one row per distinct label name (case-preserving)
#   message_labels  (message, label) pairs, each pair at most once
#   ingest_runs     one row per ingestion pass, with running counts
#
# WRITE MODEL:
#   - Exactly one writer (the ingestion run).
#   - Each message is written inside its own SAVEPOINT. If anything fails
#     half-way, that message is rolled back and nothing of it remains.
#   - Messages accumulate in one open transaction; flush() makes the
#     batch durable and records progress in ingest_runs at the same time.
#     An interrupted run therefore leaves a valid prefix of the archive
#     plus an accurate "messages indexed so far" count.
#
# SCHEMA VERSION:
#   Stored in PRAGMA user_version. A file written by a newer mboxscope is
#   refused rather than silently misread.
#
# USAGE:
#   with IndexStore.create("mail.sqlite3") as store:
#       run_id = store.begin_run("All mail.mbox")
#       store.write_message(normalized)
#       store.flush(run_id, {"messages_indexed": 1})
#
#   with IndexStore.open_readonly("mail.sqlite3") as store:
#       print(store.counts())
# ============================================================================

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from .exceptions import IndexNotOpenableError, IndexWriteError, OutputNotWritableError
from .normalizer import NormalizedMessage
from .sqlite_utils import apply_sqlite_pragmas, connect_readonly


SCHEMA_VERSION = 1

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS messages (
    id                 INTEGER PRIMARY KEY,
    sender_address     TEXT NOT NULL,
    sender_key         TEXT NOT NULL,
    sender_domain      TEXT NOT NULL,
    subject            TEXT NOT NULL DEFAULT '',
    sent_at            INTEGER,
    raw_date           TEXT,
    year               INTEGER,
    size               INTEGER NOT NULL,
    raw_size           INTEGER NOT NULL,
    attachment_count   INTEGER NOT NULL DEFAULT 0,
    recipients         TEXT NOT NULL DEFAULT '',
    header_message_id  TEXT,
    degraded           INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS labels (
    id    INTEGER PRIMARY KEY AUTOINCREMENT,
    name  TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS message_labels (
    message_id  INTEGER NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
    label_id    INTEGER NOT NULL REFERENCES labels(id),
    PRIMARY KEY (message_id, label_id)
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS ingest_runs (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    source_path        TEXT NOT NULL,
    started_at         TEXT NOT NULL,
    finished_at        TEXT,
    status             TEXT NOT NULL,
    messages_seen      INTEGER NOT NULL DEFAULT 0,
    messages_indexed   INTEGER NOT NULL DEFAULT 0,
    messages_skipped   INTEGER NOT NULL DEFAULT 0,
    messages_degraded  INTEGER NOT NULL DEFAULT 0,
    malformed_records  INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_messages_year   ON messages(year);
CREATE INDEX IF NOT EXISTS idx_messages_domain ON messages(sender_domain);
CREATE INDEX IF NOT EXISTS idx_messages_sender ON messages(sender_key);
CREATE INDEX IF NOT EXISTS idx_message_labels_label ON message_labels(label_id);
"""

# Columns of ingest_runs that update_run() may set
_RUN_COUNTERS = (
    "messages_seen",
    "messages_indexed",
    "messages_skipped",
    "messages_degraded",
    "malformed_records",
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IndexStore:
    """
    Handle to one index file. Open with create() or open_readonly().

    The handle is passed explicitly to whoever needs it; there is no
    module-level connection.
    """

    def __init__(self, db_path: str, conn: sqlite3.Connection, writable: bool):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = conn
        self.writable = writable
        self._label_ids: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, db_path: str) -> "IndexStore":
        """
        Open (or create) an index for a fresh ingestion pass.

        Existing message/label rows are deleted: re-ingesting rebuilds the
        index from scratch. ingest_runs history is kept.
        """
        db_path = str(db_path)
        if os.path.isdir(db_path):
            raise OutputNotWritableError(
                f"Index path is a directory: {db_path}", path=db_path
            )

        parent = os.path.dirname(os.path.abspath(db_path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise OutputNotWritableError(
                f"Cannot create folder for index: {e}", path=db_path
            ) from e

        try:
            # isolation_level=None: we issue BEGIN/SAVEPOINT/COMMIT ourselves
            conn = sqlite3.connect(db_path, isolation_level=None)
        except sqlite3.Error as e:
            raise OutputNotWritableError(
                f"Cannot open index for writing: {e}", path=db_path
            ) from e

        store = cls(db_path, conn, writable=True)
        try:
            apply_sqlite_pragmas(conn)
            store._migrate()
            store._clear()
        except sqlite3.Error as e:
            conn.close()
            raise OutputNotWritableError(
                f"Cannot initialize index: {e}", path=db_path
            ) from e
        return store

    @classmethod
    def open_readonly(cls, db_path: str) -> "IndexStore":
        """Open an existing index for reporting. Never creates a file."""
        db_path = str(db_path)
        if not os.path.isfile(db_path):
            raise IndexNotOpenableError(f"Index not found: {db_path}", path=db_path)

        try:
            conn = connect_readonly(db_path)
        except sqlite3.Error as e:
            raise IndexNotOpenableError(
                f"Cannot open index: {e}", path=db_path
            ) from e

        try:
            version = conn.execute("PRAGMA user_version;").fetchone()[0]
            has_messages = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type='table' AND name='messages'"
            ).fetchone()
        except sqlite3.DatabaseError as e:
            conn.close()
            raise IndexNotOpenableError(
                f"Not an index file: {e}", path=db_path
            ) from e

        if not has_messages or version < 1:
            conn.close()
            raise IndexNotOpenableError(
                f"Not an mboxscope index: {db_path}", path=db_path
            )
        if version > SCHEMA_VERSION:
            conn.close()
            raise IndexNotOpenableError(
                f"Index schema v{version} is newer than this mboxscope (v{SCHEMA_VERSION}).",
                path=db_path,
            )

        return cls(db_path, conn, writable=False)

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _migrate(self) -> None:
        assert self.conn is not None
        version = self.conn.execute("PRAGMA user_version;").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise OutputNotWritableError(
                f"Index schema v{version} is newer than this mboxscope; "
                f"refusing to overwrite.",
                path=self.db_path,
            )
        if version < 1:
            self.conn.executescript(_SCHEMA_V1)
            self.conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")

    def _clear(self) -> None:
        """On a rebuild, delete rows from any previous pass."""
        assert self.conn is not None
        self.conn.execute("BEGIN")
        self.conn.execute("DELETE FROM message_labels")
        self.conn.execute("DELETE FROM messages")
        self.conn.execute("DELETE FROM labels")
        self.conn.execute("COMMIT")
        self._label_ids.clear()

    # ------------------------------------------------------------------
    # Write path (used during ingestion)
    # ------------------------------------------------------------------

    def write_message(self, msg: NormalizedMessage, labels: Optional[List[str]] = None) -> None:
        """
        Persist one message and its labels atomically.

        Labels are upserted by name; duplicate (message, label) pairs are
        ignored. labels defaults to msg.labels. On any failure (Ctrl+C
        included) the message is rolled back completely; SQLite errors are
        raised as IndexWriteError, anything else propagates unchanged.
        """
        if labels is None:
            labels = msg.labels
        self._require_writable()
        assert self.conn is not None

        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")

        new_labels: Set[str] = set()
        self.conn.execute("SAVEPOINT write_message")
        try:
            self.conn.execute(
                """
                INSERT INTO messages
                    (id, sender_address, sender_key, sender_domain, subject,
                     sent_at, raw_date, year, size, raw_size,
                     attachment_count, recipients, header_message_id, degraded)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    msg.number,
                    msg.sender_address,
                    msg.sender_key,
                    msg.sender_domain,
                    msg.subject,
                    int(msg.sent_at.timestamp()) if msg.sent_at else None,
                    msg.raw_date,
                    msg.year,
                    int(msg.size),
                    int(msg.raw_size),
                    int(msg.attachment_count),
                    msg.recipients,
                    msg.message_id,
                    1 if msg.degraded else 0,
                ),
            )
            for name in labels:
                label_id = self._label_id(name, new_labels)
                self.conn.execute(
                    "INSERT OR IGNORE INTO message_labels (message_id, label_id) VALUES (?, ?)",
                    (msg.number, label_id),
                )
            self.conn.execute("RELEASE SAVEPOINT write_message")
        except BaseException as e:
            # Ctrl+C included: a half-written message must never be committed
            self._rollback_message(new_labels)
            if not isinstance(e, sqlite3.Error):
                raise
            raise IndexWriteError(
                f"Failed to write message #{msg.number}: {e}",
                message_number=msg.number,
            ) from e

    def _rollback_message(self, new_labels: Set[str]) -> None:
        assert self.conn is not None
        self.conn.execute("ROLLBACK TO SAVEPOINT write_message")
        self.conn.execute("RELEASE SAVEPOINT write_message")
        for name in new_labels:
            self._label_ids.pop(name, None)

    def _label_id(self, name: str, new_labels: Set[str]) -> int:
        """Return the id for a label name, inserting it if absent."""
        assert self.conn is not None
        cached = self._label_ids.get(name)
        if cached is not None:
            return cached

        row = self.conn.execute(
            "SELECT id FROM labels WHERE name = ?", (name,)
        ).fetchone()
        if row:
            label_id = int(row[0])
        else:
            cur = self.conn.execute("INSERT INTO labels (name) VALUES (?)", (name,))
            label_id = int(cur.lastrowid)
            new_labels.add(name)
        self._label_ids[name] = label_id
        return label_id

    def flush(self, run_id: Optional[int] = None, progress: Optional[Dict[str, int]] = None) -> None:
        """Make the current batch durable, recording progress with it."""
        self._require_writable()
        assert self.conn is not None
        if run_id is not None and progress:
            if not self.conn.in_transaction:
                self.conn.execute("BEGIN")
            self.update_run(run_id, progress)
        if self.conn.in_transaction:
            self.conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Ingest run bookkeeping
    # ------------------------------------------------------------------

    def begin_run(self, source_path: str) -> int:
        self._require_writable()
        assert self.conn is not None
        self.flush()
        cur = self.conn.execute(
            "INSERT INTO ingest_runs (source_path, started_at, status) VALUES (?, ?, 'running')",
            (str(source_path), utc_now_iso()),
        )
        return int(cur.lastrowid)

    def finish_run(self, run_id: int, status: str, progress: Optional[Dict[str, int]] = None) -> None:
        """Commit pending rows and close the run record ("completed" / "interrupted" / "failed")."""
        self._require_writable()
        assert self.conn is not None
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
        if progress:
            self.update_run(run_id, progress)
        self.conn.execute(
            "UPDATE ingest_runs SET status = ?, finished_at = ? WHERE id = ?",
            (status, utc_now_iso(), run_id),
        )
        self.conn.execute("COMMIT")

    def update_run(self, run_id: int, progress: Dict[str, int]) -> None:
        """Set run counters. Joins the open batch transaction if there is one."""
        assert self.conn is not None
        cols = [c for c in _RUN_COUNTERS if c in progress]
        if not cols:
            return
        assignments = ", ".join(f"{c} = ?" for c in cols)
        self.conn.execute(
            f"UPDATE ingest_runs SET {assignments} WHERE id = ?",
            [int(progress[c]) for c in cols] + [run_id],
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def counts(self) -> Dict[str, int]:
        """Row counts per table."""
        assert self.conn is not None
        out = {}
        for table in ("messages", "labels", "message_labels"):
            out[table] = int(self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        return out

    def latest_run(self) -> Optional[Dict[str, Any]]:
        assert self.conn is not None
        cur = self.conn.execute(
            "SELECT * FROM ingest_runs ORDER BY id DESC LIMIT 1"
        )
        row = cur.fetchone()
        if row is None:
            return None
        names = [d[0] for d in cur.description]
        return dict(zip(names, row))

    def label_names(self) -> List[str]:
        assert self.conn is not None
        return [r[0] for r in self.conn.execute("SELECT name FROM labels ORDER BY name")]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require_writable(self) -> None:
        if not self.writable:
            raise IndexWriteError("Index was opened read-only.")
        if self.conn is None:
            raise IndexWriteError("Index is closed.")

    def close(self) -> None:
        """
        Release the SQLite handle. Safe to call multiple times.

        A writer commits any messages still pending; every one of them was
        written atomically, so the file stays a valid prefix index.
        """
        if self.conn is None:
            return
        try:
            if self.writable and self.conn.in_transaction:
                self.conn.execute("COMMIT")
        finally:
            self.conn.close()
            self.conn = None
