# ============================================================================
# mboxscope -- Ingestion Pipeline (mboxscope/core/ingest.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Runs one full ingestion pass:
#     frame mbox -> parse each message -> normalize -> write to index
#
#   This is the module that runs for your multi-hour Takeout import.
#
# KEY DESIGN DECISIONS:
#
#   1. Stream, never load
#      The framer yields one message at a time. RAM stays flat whether the
#      archive is 50 MB or 50 GB.
#
#   2. Never crash on a single message
#      A message the parser cannot make sense of is counted as "skipped",
#      logged to the error log with its number and byte offset, and the
#      scan moves on. Only storage failures (disk full, locked file) stop
#      the run, because every following write would fail the same way.
#
#   3. Batch commits with progress
#      Rows are committed every `ingest.commit_every` messages, and the
#      ingest_runs row is updated in the same transaction. Ctrl+C leaves a
#      usable index of everything committed so far, marked "interrupted".
#
#   4. "Unlabeled" fallback
#      A message with no label header gets the configured fallback label,
#      so the label breakout accounts for every message.
# ============================================================================

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from ..monitoring.logger import (
    IngestLogEntry,
    SkipLogEntry,
    get_app_logger,
    get_error_logger,
    initialize_logging,
)
from ..parsers.mbox_framer import MboxFramer
from ..parsers.message_parser import MessageParser, ParseFailure
from .config import Config
from .formatting import fmt_size
from .exceptions import IndexWriteError
from .index_store import IndexStore
from .normalizer import normalize


# -------------------------------------------------------------------
# Progress callback interface
# -------------------------------------------------------------------

class IngestProgressCallback:
    """
    Override these methods to receive progress updates during ingestion.

    Default implementations do nothing (safe no-op). Subclass this for
    progress bars or test probes.
    """

    def on_message_indexed(self, number: int, degraded: bool) -> None:
        pass

    def on_message_skipped(self, number: int, offset: int, reason: str) -> None:
        pass

    def on_progress(self, messages_seen: int, bytes_read: int, total_bytes: int) -> None:
        pass

    def on_ingest_complete(self, summary: "IngestSummary") -> None:
        pass


@dataclass
class IngestSummary:
    """Counters for one ingestion pass."""
    messages_seen: int = 0
    messages_indexed: int = 0
    messages_skipped: int = 0
    messages_degraded: int = 0
    malformed_records: int = 0
    elapsed_seconds: float = 0.0
    status: str = "running"

    def progress(self) -> Dict[str, int]:
        """Counter columns as stored in ingest_runs."""
        data = asdict(self)
        data.pop("elapsed_seconds")
        data.pop("status")
        return data


class Ingestor:
    """
    Drives Framer -> Parser -> Normalizer -> IndexStore for one archive.

    Usage:
        with IndexStore.create(db_path) as store:
            summary = Ingestor(config, store).ingest(mbox_path)
    """

    def __init__(self, config: Config, store: IndexStore):
        self.config = config
        self.store = store
        self.parser = MessageParser(
            label_header=config.ingest.label_header,
            max_mime_depth=config.ingest.max_mime_depth,
        )
        initialize_logging(config.logging.log_dir)
        self.logger = get_app_logger("ingest")
        self.error_logger = get_error_logger("ingest")

    def ingest(
        self,
        mbox_path: str,
        progress_callback: Optional[IngestProgressCallback] = None,
    ) -> IngestSummary:
        """
        Index every message of one mbox archive.

        Raises InputNotReadableError if the archive cannot be opened and
        IndexWriteError if the index stops accepting writes. Everything
        else about individual messages is counted, not raised.
        """
        if progress_callback is None:
            progress_callback = IngestProgressCallback()

        framer = MboxFramer(mbox_path)
        cfg = self.config.ingest
        summary = IngestSummary()
        start_time = time.time()

        run_id = self.store.begin_run(mbox_path)
        self.logger.info(
            "ingest_started",
            mbox=str(mbox_path),
            database=self.store.db_path,
            archive_bytes=framer.size,
        )
        print(f"Indexing {mbox_path} ({fmt_size(framer.size)})")

        pending = 0
        try:
            for raw in framer:
                if raw.envelope is None:
                    # Bytes before the first "From " line
                    summary.malformed_records += 1
                    self._log_skip(progress_callback, raw.number, raw.offset, "no-envelope")
                    continue

                summary.messages_seen += 1
                outcome = self.parser.parse(raw)

                if isinstance(outcome, ParseFailure):
                    summary.messages_skipped += 1
                    self._log_skip(progress_callback, outcome.number, outcome.offset, outcome.reason)
                else:
                    labels = outcome.headers.labels or [cfg.unlabeled_label]
                    self.store.write_message(normalize(outcome, labels=labels))
                    summary.messages_indexed += 1
                    if outcome.degraded:
                        summary.messages_degraded += 1
                    progress_callback.on_message_indexed(outcome.number, outcome.degraded)
                    pending += 1

                if pending >= cfg.commit_every:
                    self.store.flush(run_id, summary.progress())
                    pending = 0

                if summary.messages_seen % cfg.progress_every == 0:
                    self._report_progress(progress_callback, summary, framer, start_time)

        except KeyboardInterrupt:
            summary.status = "interrupted"
            self._finish(run_id, summary, start_time, mbox_path)
            print("\nInterrupted -- index holds every message committed so far.")
            raise
        except IndexWriteError as e:
            summary.status = "failed"
            self.error_logger.error("ingest_failed", error=str(e), **summary.progress())
            # The failed message is already rolled back; keep what came before
            self._finish(run_id, summary, start_time, mbox_path, error=str(e))
            raise

        summary.status = "completed"
        self._finish(run_id, summary, start_time, mbox_path)
        progress_callback.on_ingest_complete(summary)

        print("\nIndexing complete:")
        print(f"  Messages seen:     {summary.messages_seen}")
        print(f"  Messages indexed:  {summary.messages_indexed}")
        print(f"  Messages degraded: {summary.messages_degraded}")
        print(f"  Messages skipped:  {summary.messages_skipped}")
        print(f"  Malformed records: {summary.malformed_records}")
        print(f"  Time: {summary.elapsed_seconds:.1f}s")
        if summary.messages_skipped or summary.malformed_records:
            print("  Details of skipped records are in the error log.")

        return summary

    # ------------------------------------------------------------------
    # Internal methods
    # ------------------------------------------------------------------

    def _log_skip(
        self,
        progress_callback: IngestProgressCallback,
        number: int,
        offset: int,
        reason: str,
    ) -> None:
        self.error_logger.warning("message_skipped", **SkipLogEntry.build(number, offset, reason))
        progress_callback.on_message_skipped(number, offset, reason)

    def _report_progress(
        self,
        progress_callback: IngestProgressCallback,
        summary: IngestSummary,
        framer: MboxFramer,
        start_time: float,
    ) -> None:
        elapsed = time.time() - start_time
        pct = (100.0 * framer.position / framer.size) if framer.size else 100.0
        self.logger.info(
            "ingest_progress",
            bytes_read=framer.position,
            percent=round(pct, 1),
            elapsed_seconds=round(elapsed, 1),
            **summary.progress(),
        )
        print(
            f"  {summary.messages_seen} messages, "
            f"{fmt_size(framer.position)} / {fmt_size(framer.size)} ({pct:.1f}%)"
        )
        progress_callback.on_progress(summary.messages_seen, framer.position, framer.size)

    def _finish(
        self,
        run_id: int,
        summary: IngestSummary,
        start_time: float,
        mbox_path: str,
        error: Optional[str] = None,
    ) -> None:
        summary.elapsed_seconds = time.time() - start_time
        self.store.finish_run(run_id, summary.status, summary.progress())
        self.logger.info(
            "ingest_finished",
            status=summary.status,
            **IngestLogEntry.build(
                mbox=str(mbox_path),
                database=self.store.db_path,
                messages_seen=summary.messages_seen,
                messages_indexed=summary.messages_indexed,
                messages_skipped=summary.messages_skipped,
                messages_degraded=summary.messages_degraded,
                malformed_records=summary.malformed_records,
                elapsed_seconds=summary.elapsed_seconds,
                error=error,
            ),
        )

