# ============================================================================
# mboxscope -- Index Store Tests (tests/test_index_store.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Exercises the SQLite index directly: schema creation, label upserts,
#   per-message atomicity, batch commits with ingest_runs progress, and
#   the read-only open path.
#
# INTERNET ACCESS: NONE
# ============================================================================

import sqlite3

import pytest

from mboxscope.core.exceptions import (
    IndexNotOpenableError,
    IndexWriteError,
    OutputNotWritableError,
)
from mboxscope.core.index_store import SCHEMA_VERSION, IndexStore
from mboxscope.core.normalizer import NormalizedMessage


def _msg(number, labels=("Inbox",), sender="a@example.com", year=2020, size=10):
    return NormalizedMessage(
        number=number,
        sender_address=sender,
        sender_key=sender.lower(),
        sender_domain=sender.rsplit("@", 1)[1].lower(),
        subject=f"subject {number}",
        sent_at=None,
        raw_date=None,
        year=year,
        size=size,
        raw_size=size + 50,
        attachment_count=0,
        recipients="",
        message_id=None,
        degraded=False,
        labels=list(labels),
    )


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "sub" / "dir" / "mail.sqlite3")


class TestCreate:
    def test_creates_parent_dirs_and_schema(self, db_path):
        with IndexStore.create(db_path) as store:
            assert store.counts() == {"messages": 0, "labels": 0, "message_labels": 0}
            version = store.conn.execute("PRAGMA user_version").fetchone()[0]
            assert version == SCHEMA_VERSION

    def test_wal_mode(self, db_path):
        with IndexStore.create(db_path) as store:
            mode = store.conn.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode.lower() == "wal"

    def test_recreate_clears_rows(self, db_path):
        with IndexStore.create(db_path) as store:
            store.write_message(_msg(1))
        with IndexStore.create(db_path) as store:
            assert store.counts()["messages"] == 0
            assert store.counts()["labels"] == 0

    def test_directory_path_refused(self, tmp_path):
        with pytest.raises(OutputNotWritableError) as exc:
            IndexStore.create(str(tmp_path))
        assert exc.value.error_code == "IO-002"

    def test_non_sqlite_file_refused(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_bytes(b"this is definitely not a database file" * 100)
        with pytest.raises(OutputNotWritableError):
            IndexStore.create(str(path))


class TestWriteMessage:
    def test_labels_deduplicated_globally(self, db_path):
        with IndexStore.create(db_path) as store:
            store.write_message(_msg(1, labels=("Inbox", "Starred")))
            store.write_message(_msg(2, labels=("Inbox",)))
            store.write_message(_msg(3, labels=("Sent",)))
            assert store.counts() == {"messages": 3, "labels": 3, "message_labels": 4}
            assert store.label_names() == ["Inbox", "Sent", "Starred"]

    def test_duplicate_label_pair_ignored(self, db_path):
        with IndexStore.create(db_path) as store:
            store.write_message(_msg(1, labels=("Inbox", "Inbox")))
            assert store.counts()["message_labels"] == 1

    def test_labels_argument_overrides(self, db_path):
        with IndexStore.create(db_path) as store:
            store.write_message(_msg(1, labels=()), labels=["Unlabeled"])
            assert store.label_names() == ["Unlabeled"]

    def test_failed_message_rolled_back_completely(self, db_path):
        with IndexStore.create(db_path) as store:
            store.write_message(_msg(1, labels=("Inbox",)))
            # Same id again: the INSERT fails after nothing else was written
            with pytest.raises(IndexWriteError) as exc:
                store.write_message(_msg(1, labels=("Brand New",)))
            assert exc.value.error_code == "IDX-002"
            store.write_message(_msg(2, labels=("Inbox",)))
            store.flush()
            assert store.counts() == {"messages": 2, "labels": 1, "message_labels": 2}

    def test_label_cache_survives_rollback(self, db_path):
        with IndexStore.create(db_path) as store:
            store.write_message(_msg(1, labels=("Inbox",)))
            # Fail on the link row, after the new label row was inserted
            store.conn.execute(
                "CREATE TEMP TRIGGER boom BEFORE INSERT ON main.message_labels"
                " WHEN NEW.message_id = 99 BEGIN SELECT RAISE(ABORT, 'boom'); END"
            )
            with pytest.raises(IndexWriteError):
                store.write_message(_msg(99, labels=("Ghost",)))
            store.conn.execute("DROP TRIGGER boom")

            # "Ghost" must be inserted again, not served from a stale cache
            store.write_message(_msg(2, labels=("Ghost",)))
            store.flush()
            assert store.label_names() == ["Ghost", "Inbox"]
            assert store.counts() == {"messages": 2, "labels": 2, "message_labels": 2}

    def test_readonly_store_refuses_writes(self, db_path):
        IndexStore.create(db_path).close()
        with IndexStore.open_readonly(db_path) as store:
            with pytest.raises(IndexWriteError):
                store.write_message(_msg(1))


class TestRuns:
    def test_progress_committed_with_batch(self, db_path):
        store = IndexStore.create(db_path)
        run_id = store.begin_run("archive.mbox")
        store.write_message(_msg(1))
        store.write_message(_msg(2))
        store.flush(run_id, {"messages_seen": 2, "messages_indexed": 2})

        # A second connection sees the committed batch and its count
        other = sqlite3.connect(db_path)
        try:
            assert other.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 2
            row = other.execute(
                "SELECT status, messages_indexed FROM ingest_runs WHERE id = ?", (run_id,)
            ).fetchone()
            assert row == ("running", 2)
        finally:
            other.close()
            store.close()

    def test_finish_run(self, db_path):
        with IndexStore.create(db_path) as store:
            run_id = store.begin_run("archive.mbox")
            store.write_message(_msg(1))
            store.finish_run(run_id, "completed", {"messages_seen": 1, "messages_indexed": 1})
            run = store.latest_run()
            assert run["id"] == run_id
            assert run["status"] == "completed"
            assert run["finished_at"]
            assert run["messages_indexed"] == 1

    def test_close_commits_pending(self, db_path):
        store = IndexStore.create(db_path)
        store.write_message(_msg(1))
        store.close()
        store.close()  # second close is a no-op
        with IndexStore.open_readonly(db_path) as ro:
            assert ro.counts()["messages"] == 1


class TestOpenReadonly:
    def test_missing_file(self, tmp_path):
        with pytest.raises(IndexNotOpenableError) as exc:
            IndexStore.open_readonly(str(tmp_path / "missing.sqlite3"))
        assert exc.value.error_code == "IDX-001"

    def test_missing_file_not_created(self, tmp_path):
        path = tmp_path / "missing.sqlite3"
        with pytest.raises(IndexNotOpenableError):
            IndexStore.open_readonly(str(path))
        assert not path.exists()

    def test_not_a_database(self, tmp_path):
        path = tmp_path / "garbage.sqlite3"
        path.write_bytes(b"garbage" * 1000)
        with pytest.raises(IndexNotOpenableError):
            IndexStore.open_readonly(str(path))

    def test_foreign_sqlite_file(self, tmp_path):
        path = tmp_path / "other.sqlite3"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE t (x)")
        conn.commit()
        conn.close()
        with pytest.raises(IndexNotOpenableError):
            IndexStore.open_readonly(str(path))

    def test_newer_schema_refused(self, db_path):
        IndexStore.create(db_path).close()
        conn = sqlite3.connect(db_path)
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION + 1}")
        conn.commit()
        conn.close()
        with pytest.raises(IndexNotOpenableError):
            IndexStore.open_readonly(db_path)
