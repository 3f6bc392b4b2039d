# ============================================================================
# conftest.py -- Shared Test Fixtures for the mboxscope Test Suite
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Pytest automatically loads this file before any test runs.
#   It provides:
#     1. sys.path setup so "from mboxscope.core.X import Y" works from any test
#     2. make_message() / build_mbox() to write small mbox archives by hand
#     3. Fixtures for a test Config, an mbox writer, and a ready-made index
#        built from the three-message reference archive
#
# INTERNET ACCESS: NONE
# ============================================================================

import sys
from pathlib import Path
from typing import Iterable, Optional

import pytest

# -- sys.path setup --
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mboxscope.core.config import Config, LoggingConfig


# ============================================================================
# SECTION 0: MBOX BUILDERS
# ============================================================================
#
# An mbox archive is just text: an envelope "From " line, headers, a blank
# line, the body, and a blank line before the next envelope. Building them
# by hand keeps every test readable and independent of real exports.
# ============================================================================

ENVELOPE = "From 1689243957384012345@xxx Mon Jan 06 10:00:00 +0000 2020"


def make_message(
    sender: Optional[str] = "a@example.com",
    subject: Optional[str] = "Hello",
    date: Optional[str] = "Mon, 06 Jan 2020 10:00:00 +0000",
    labels: Optional[str] = "Inbox",
    body: str = "Hi there.",
    extra_headers: Iterable[str] = (),
    envelope: str = ENVELOPE,
) -> str:
    """One message (envelope + headers + body), ending in a newline."""
    lines = [envelope]
    if labels is not None:
        lines.append(f"X-Gmail-Labels: {labels}")
    if sender is not None:
        lines.append(f"From: {sender}")
    lines.append("To: me@example.net")
    if subject is not None:
        lines.append(f"Subject: {subject}")
    if date is not None:
        lines.append(f"Date: {date}")
    lines.extend(extra_headers)
    lines.append("")
    lines.append(body.rstrip("\n"))
    return "\n".join(lines) + "\n"


def build_mbox(messages: Iterable[str]) -> str:
    """Join messages with the blank separator line mbox requires."""
    return "\n".join(messages)


def reference_messages():
    """
    The three-message reference archive:

      #1  a@example.com   2020  Inbox
      #2  b@example.org   2020  Inbox, Starred
      #3  a@example.com   2021  Sent
    """
    return [
        make_message(
            sender="Alice <a@example.com>",
            subject="First",
            date="Mon, 06 Jan 2020 10:00:00 +0000",
            labels="Inbox",
            body="One.",
        ),
        make_message(
            sender="Bob <b@example.org>",
            subject="Second",
            date="Tue, 02 Jun 2020 09:30:00 +0000",
            labels="Inbox,Starred",
            body="Two two.",
        ),
        make_message(
            sender="a@example.com",
            subject="Third",
            date="Wed, 03 Mar 2021 08:15:00 +0000",
            labels="Sent",
            body="Three three three.",
        ),
    ]


# ============================================================================
# SECTION 1: FIXTURES
# ============================================================================

@pytest.fixture
def test_config(tmp_path):
    """Default config with logs redirected into the test's temp folder."""
    config = Config(logging=LoggingConfig(log_dir=str(tmp_path / "logs")))
    config.ingest.progress_every = 1
    config.ingest.commit_every = 2
    return config


@pytest.fixture
def write_mbox(tmp_path):
    """Factory: write_mbox(text_or_bytes, name="archive.mbox") -> path."""
    def _write(content, name: str = "archive.mbox") -> str:
        path = tmp_path / name
        data = content.encode("utf-8") if isinstance(content, str) else content
        path.write_bytes(data)
        return str(path)
    return _write


@pytest.fixture
def reference_index(tmp_path, write_mbox, test_config):
    """Path of an index built from the three-message reference archive."""
    from mboxscope.core.index_store import IndexStore
    from mboxscope.core.ingest import Ingestor

    mbox = write_mbox(build_mbox(reference_messages()))
    db_path = str(tmp_path / "index" / "mail.sqlite3")
    with IndexStore.create(db_path) as store:
        Ingestor(test_config, store).ingest(mbox)
    return db_path


@pytest.fixture(autouse=True, scope="session")
def _session_logging(tmp_path_factory):
    """Send structured logs of the whole run into one temp folder."""
    from mboxscope.monitoring.logger import initialize_logging
    initialize_logging(str(tmp_path_factory.mktemp("logs")))
