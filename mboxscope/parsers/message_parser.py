# ============================================================================
# mboxscope -- Message Parser (mboxscope/parsers/message_parser.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Turns one raw message (bytes cut out by the mbox framer) into a typed
#   record: sender address, recipients, subject, date, Gmail labels, and
#   the total decoded size of its MIME parts.
#
# HOW IT WORKS:
#   1. Parse the bytes with Python's built-in email library (compat32
#      policy, so header values come back as the raw text we decode
#      ourselves and can fall back to)
#   2. Decode RFC 2047 "encoded words" (=?UTF-8?B?...?=) in Subject/From
#   3. Pull the address out of From (or Sender) -- display name dropped
#   4. Parse Date and convert it to UTC
#   5. Walk the MIME tree (recursively, with a depth limit) adding up the
#      decoded size of every leaf part and counting attachments
#   6. Split the X-Gmail-Labels header(s) into label names
#
# NEVER CRASHES ON ONE MESSAGE:
#   parse() returns either a ParsedMessage (possibly with warnings, meaning
#   some field fell back to a sentinel) or a ParseFailure. It does not
#   raise for bad input.
#
# DEPENDENCIES:
#   - Python's built-in `email` package
# ============================================================================

from __future__ import annotations

import binascii
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.errors import HeaderParseError
from email.header import Header, decode_header
from email.message import Message
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import List, Optional, Tuple, Union

from .mbox_framer import RawMessage


# Transfer encodings whose decoded length we can compute
_DECODABLE_ENCODINGS = {"base64", "quoted-printable", "x-uuencode", "uuencode", "uue", "x-uue"}
_IDENTITY_ENCODINGS = {"", "7bit", "8bit", "binary"}

_BRACKET_ADDRESS_RE = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")

# Permissive address fallback: anything@anything without spaces/brackets
_LOOSE_ADDRESS_RE = re.compile(r"[^\s<>\"',;:()\[\]]+@[^\s<>\"',;:()\[\]]+")

_FOLDING_RE = re.compile(r"\r?\n[ \t]+")


# -------------------------------------------------------------------
# Result types
# -------------------------------------------------------------------

@dataclass
class MessageHeaders:
    """
    The headers we care about, with explicit fallbacks.

    sender:      bare address from From/Sender, None if absent/unparsable
    recipients:  bare addresses from To (may be empty)
    subject:     decoded subject, "" if absent
    date:        timezone-aware UTC datetime, None if absent/unparsable
    raw_date:    Date header exactly as written, None if absent
    message_id:  Message-ID header, None if absent
    labels:      label names in first-seen order, duplicates removed
    """
    sender: Optional[str] = None
    recipients: List[str] = field(default_factory=list)
    subject: str = ""
    date: Optional[datetime] = None
    raw_date: Optional[str] = None
    message_id: Optional[str] = None
    labels: List[str] = field(default_factory=list)


@dataclass
class ParsedMessage:
    number: int
    offset: int
    headers: MessageHeaders
    size: int                  # decoded size of all leaf parts, in bytes
    raw_size: int              # framed size in the archive, in bytes
    attachment_count: int = 0
    part_count: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


@dataclass
class ParseFailure:
    number: int
    offset: int
    reason: str


ParseOutcome = Union[ParsedMessage, ParseFailure]


# -------------------------------------------------------------------
# Header helpers
# -------------------------------------------------------------------

def unfold(value: str) -> str:
    """Undo RFC 5322 header folding and trim."""
    return _FOLDING_RE.sub(" ", value).strip()


def decode_header_value(value: Union[str, Header, None]) -> Tuple[str, bool]:
    """
    Decode RFC 2047 encoded words into plain text.

    Returns (text, ok). When a charset is unknown or an encoded word is
    malformed, returns the raw header text (unfolded) with ok=False.

    Example:
        decode_header_value("=?utf-8?q?Caf=C3=A9?=")  -> ("Café", True)
        decode_header_value("=?x-bogus?q?abc?=")        -> ("=?x-bogus?q?abc?=", False)
    """
    if value is None:
        return "", True

    if isinstance(value, Header):
        raw = unfold(str(value))
        source: Union[str, Header] = value
    else:
        raw = unfold(value)
        source = raw

    try:
        parts = decode_header(source)
    except (HeaderParseError, ValueError, binascii.Error, AssertionError):
        return raw, False

    out: List[str] = []
    for chunk, charset in parts:
        if isinstance(chunk, str):
            out.append(chunk)
            continue
        if charset is None or charset.lower() == "unknown-8bit":
            out.append(chunk.decode("utf-8", errors="replace"))
            continue
        try:
            out.append(chunk.decode(charset))
        except (LookupError, UnicodeDecodeError):
            return raw, False

    return unfold("".join(out)), True


def parse_label_header(value: str) -> List[str]:
    """
    Split one label header value into label names.

    Takeout writes all labels of a message into ONE header, comma
    separated. Names containing a comma are wrapped in double quotes:

        X-Gmail-Labels: Inbox,Important,"Receipts, 2021",Category Updates

    Folded lines are joined, surrounding quotes and whitespace stripped,
    empty names dropped.
    """
    if not value:
        return []

    value = _FOLDING_RE.sub(" ", value).replace("\r", "").replace("\n", "")

    labels: List[str] = []
    current: List[str] = []
    in_quotes = False

    for ch in value:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            name = "".join(current).strip()
            if name:
                labels.append(name)
            current = []
        else:
            current.append(ch)

    name = "".join(current).strip()
    if name:
        labels.append(name)

    return labels


def extract_address(raw_value: str) -> Optional[str]:
    """
    Pull the mailbox address out of a From-style header.

    Tolerates missing angle brackets, trailing comments, and stray
    display-name text. Returns None only when nothing usable is present.

        "Jane Doe <Jane@Example.com>"   -> "Jane@Example.com"
        "jane@example.com (Jane)"       -> "jane@example.com"
        "Jane Doe jane@example.com"     -> "jane@example.com"
        "MAILER-DAEMON"                 -> "MAILER-DAEMON"
    """
    text = unfold(raw_value or "")
    if not text:
        return None

    m = _BRACKET_ADDRESS_RE.search(text)
    if m:
        return m.group(1).strip()

    try:
        pairs = getaddresses([text])
    except (ValueError, TypeError, IndexError):
        pairs = []

    # getaddresses glues words together on odd input; only trust verbatim,
    # single-token hits
    for _, addr in pairs:
        if addr and "@" in addr and addr in text and not _has_space(addr):
            return addr.strip()

    m = _LOOSE_ADDRESS_RE.search(text)
    if m:
        return m.group(0)

    if " " not in text and "<" not in text:
        return text

    for _, addr in pairs:
        if addr and addr.strip() and addr in text and not _has_space(addr.strip()):
            return addr.strip()

    return None


def _has_space(value: str) -> bool:
    return any(ch.isspace() for ch in value)


def parse_date(raw_value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 5322 Date header into an aware UTC datetime.

    Dates without a zone ("-0000" or none at all) are taken as UTC.
    Returns None when the value cannot be parsed.
    """
    if not raw_value:
        return None
    try:
        dt = parsedate_to_datetime(unfold(raw_value))
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if dt is None:
        return None
    try:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        return None


# -------------------------------------------------------------------
# Parser
# -------------------------------------------------------------------

class MessageParser:
    """
    Parse one framed message into headers + size accounting.

    Usage:
        parser = MessageParser(label_header="X-Gmail-Labels")
        outcome = parser.parse(raw)
        if isinstance(outcome, ParseFailure):
            ...
    """

    def __init__(self, label_header: str = "X-Gmail-Labels", max_mime_depth: int = 32):
        self.label_header = label_header
        self.max_mime_depth = max_mime_depth
        self._bytes_parser = BytesParser(policy=policy.compat32)

    def parse(self, raw: RawMessage) -> ParseOutcome:
        if not raw.data.strip():
            return ParseFailure(raw.number, raw.offset, "empty message")

        try:
            msg = self._bytes_parser.parsebytes(raw.data)
        except Exception as e:  # the email package signals odd input many ways
            return ParseFailure(raw.number, raw.offset, f"{type(e).__name__}: {e}")

        if not msg.keys():
            return ParseFailure(raw.number, raw.offset, "no header block")

        warnings: List[str] = []
        if raw.truncated:
            warnings.append("truncated")

        headers = self._parse_headers(msg, warnings)

        stats = _SizeStats()
        self._measure(msg, 0, stats)
        warnings.extend(w for w in stats.warnings if w not in warnings)

        return ParsedMessage(
            number=raw.number,
            offset=raw.offset,
            headers=headers,
            size=stats.size,
            raw_size=raw.size,
            attachment_count=stats.attachments,
            part_count=stats.parts,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    def _parse_headers(self, msg: Message, warnings: List[str]) -> MessageHeaders:
        headers = MessageHeaders()

        # --- Sender: From, then Sender ---
        for name in ("From", "Sender"):
            for value in msg.get_all(name, []):
                addr = extract_address(_raw_text(value))
                if addr:
                    headers.sender = addr
                    break
            if headers.sender:
                break
        if headers.sender is None:
            warnings.append("sender-missing")

        # --- Recipients ---
        to_values = [_raw_text(v) for v in msg.get_all("To", [])]
        if to_values:
            try:
                headers.recipients = [a for _, a in getaddresses(to_values) if a]
            except (ValueError, TypeError, IndexError):
                headers.recipients = []

        # --- Subject ---
        subject = msg.get("Subject")
        if subject is not None:
            headers.subject, ok = decode_header_value(subject)
            if not ok:
                warnings.append("subject-undecodable")

        # --- Date ---
        raw_date = msg.get("Date")
        if raw_date is None:
            warnings.append("date-missing")
        else:
            headers.raw_date = unfold(_raw_text(raw_date))
            headers.date = parse_date(headers.raw_date)
            if headers.date is None:
                warnings.append("date-unparsable")

        message_id = msg.get("Message-ID")
        if message_id is not None:
            headers.message_id = unfold(_raw_text(message_id)) or None

        # --- Labels: every occurrence of the label header ---
        seen = set()
        for value in msg.get_all(self.label_header, []):
            text, _ = decode_header_value(value)
            for name in parse_label_header(text):
                if name not in seen:
                    seen.add(name)
                    headers.labels.append(name)

        return headers

    # ------------------------------------------------------------------
    # MIME size accounting
    # ------------------------------------------------------------------

    def _measure(self, part: Message, depth: int, stats: "_SizeStats") -> None:
        """Add up decoded leaf sizes. Depth-limited; message parts never cycle."""
        if depth > self.max_mime_depth:
            stats.note("mime-depth-exceeded")
            return

        if part.is_multipart():
            for sub in part.get_payload() or []:
                if isinstance(sub, Message):
                    self._measure(sub, depth + 1, stats)
            return

        # A multipart with a broken boundary lands here as one opaque leaf
        stats.parts += 1
        disposition = str(part.get("Content-Disposition", "") or "").strip().lower()
        if part.get_filename() or disposition.startswith("attachment"):
            stats.attachments += 1

        payload = part.get_payload()
        if not isinstance(payload, str):
            return

        cte = str(part.get("Content-Transfer-Encoding", "") or "").strip().lower()
        if cte in _DECODABLE_ENCODINGS:
            try:
                decoded = part.get_payload(decode=True)
            except (ValueError, binascii.Error):
                decoded = None
            if decoded is None:
                stats.size += len(_payload_bytes(payload))
            else:
                stats.size += len(decoded)
        elif cte in _IDENTITY_ENCODINGS:
            stats.size += len(_payload_bytes(payload))
        else:
            stats.note("unknown-transfer-encoding")
            stats.size += len(_payload_bytes(payload))


@dataclass
class _SizeStats:
    size: int = 0
    parts: int = 0
    attachments: int = 0
    warnings: List[str] = field(default_factory=list)

    def note(self, warning: str) -> None:
        if warning not in self.warnings:
            self.warnings.append(warning)


def _raw_text(value) -> str:
    """compat32 returns str, or a Header when the raw value held 8-bit bytes."""
    return str(value) if value is not None else ""


def _payload_bytes(payload: str) -> bytes:
    # compat32 keeps undecodable bytes as surrogates; undo that to count them
    return payload.encode("utf-8", errors="surrogateescape")
