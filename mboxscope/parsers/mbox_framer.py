# ============================================================================
# mboxscope -- Mbox Framer (mboxscope/parsers/mbox_framer.py)
# ============================================================================
#
# WHAT THIS FILE DOES (plain English):
#   Streams a Unix mbox archive (.mbox) and cuts it into one raw byte
#   block per email, without loading the whole file into memory.
#
#   An mbox file is a single file containing many email messages
#   concatenated together. Each message starts with an "envelope" line:
#
#     From 1689243957384012345@xxx Wed Jul 12 09:15:03 +0000 2023
#
#   Google Takeout exports Gmail this way, often as one 10+ GB file.
#
# FRAMING RULE:
#   A new message starts at a line that
#     1. begins with the literal "From " at column 0,
#     2. carries a sender token and a date token containing a time
#        (HH:MM), and
#     3. is the first line of the file or directly follows a blank line.
#   Anything else is message content. Exporters quote body lines that
#   begin with "From " as ">From "; those lines never match rule 1 and
#   are passed through untouched (no unquoting).
#
# FAILURE MODES:
#   - Bytes before the first envelope line are yielded as a record with
#     envelope=None so the caller can count them as malformed.
#   - A last message cut off mid-way is yielded with truncated=True.
#   - Only an unreadable FILE raises (InputNotReadableError).
#
# DEPENDENCIES:
#   None -- reads bytes with Python's built-in open().
# ============================================================================

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..core.exceptions import InputNotReadableError


# "From " + sender token + date token with a clock time somewhere in it
_ENVELOPE_RE = re.compile(rb"^From \S+ +\S.*\d{1,2}:\d{2}")

# End of the header block: the first empty line
_HEADER_END_RE = re.compile(rb"\r?\n\r?\n")


@dataclass
class RawMessage:
    """
    One framed record from the archive.

    number:    1-based position in the archive (stable identifier)
    offset:    byte offset of the envelope line (or of the record start)
    envelope:  the "From ..." line without line ending, None for garbage
               found before the first envelope
    data:      the message bytes (headers + body), envelope excluded
    truncated: True if the record looks cut off
    """
    number: int
    offset: int
    envelope: Optional[bytes]
    data: bytes
    truncated: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


def is_envelope_line(line: bytes) -> bool:
    """True if the line looks like an mbox "From " separator."""
    return bool(_ENVELOPE_RE.match(line))


def _is_blank(line: bytes) -> bool:
    return line in (b"\n", b"\r\n", b"\r")


class MboxFramer:
    """
    Lazy, restartable iterator over the messages of one mbox file.

    Each call to iter() opens the file and starts again from byte 0,
    so the same framer can be scanned more than once.

    Usage:
        framer = MboxFramer("All mail Including Spam and Trash.mbox")
        for raw in framer:
            print(raw.number, raw.size)
    """

    def __init__(self, path: str):
        self.path = str(path)
        if not os.path.isfile(self.path):
            raise InputNotReadableError(
                f"Mbox archive not found: {self.path}", path=self.path
            )
        if not os.access(self.path, os.R_OK):
            raise InputNotReadableError(
                f"Mbox archive is not readable: {self.path}", path=self.path
            )
        self.size = os.path.getsize(self.path)
        self.position = 0

    def __iter__(self) -> Iterator[RawMessage]:
        try:
            handle = open(self.path, "rb")
        except OSError as e:
            raise InputNotReadableError(
                f"Cannot open mbox archive: {e}", path=self.path
            ) from e

        with handle:
            yield from self._frame(handle)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _frame(self, handle) -> Iterator[RawMessage]:
        number = 0
        offset = 0                 # running byte offset of the current line
        record_offset = 0
        envelope: Optional[bytes] = None
        lines: List[bytes] = []
        prev_blank = True          # start of file counts as "after a blank line"
        self.position = 0

        for line in handle:
            if prev_blank and is_envelope_line(line):
                if envelope is not None or any(not _is_blank(x) for x in lines):
                    number += 1
                    yield self._finish(number, record_offset, envelope, lines, last=False)
                envelope = line.rstrip(b"\r\n")
                lines = []
                record_offset = offset
            else:
                lines.append(line)

            prev_blank = _is_blank(line)
            offset += len(line)
            self.position = offset

        if envelope is not None or any(not _is_blank(x) for x in lines):
            number += 1
            yield self._finish(number, record_offset, envelope, lines, last=True)

    @staticmethod
    def _finish(
        number: int,
        offset: int,
        envelope: Optional[bytes],
        lines: List[bytes],
        last: bool,
    ) -> RawMessage:
        ends_with_newline = bool(lines) and lines[-1].endswith(b"\n")
        has_header_end = bool(_HEADER_END_RE.search(b"".join(lines)))

        # The blank line before the next envelope is a separator, not content
        if not last and lines and _is_blank(lines[-1]):
            lines = lines[:-1]

        data = b"".join(lines)
        truncated = envelope is not None and (
            not has_header_end or (last and not ends_with_newline)
        )
        return RawMessage(
            number=number,
            offset=offset,
            envelope=envelope,
            data=data,
            truncated=bool(truncated),
        )
