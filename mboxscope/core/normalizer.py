# ============================================================================
# mboxscope -- Entity Normalizer (mboxscope/core/normalizer.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Turns a parsed message into the stable grouping keys the report
#   aggregates on: sender key, sender domain, and calendar year.
#
#   Pure functions: no I/O, no failure path. Missing or malformed input
#   becomes the sentinel "unknown" so GROUP BY never drops a row.
#
# RULES:
#   sender_key     trimmed + lowercased address     "Bob@X.org " -> "bob@x.org"
#   sender_domain  lowercased text after LAST "@"   "a@b@Mail.com" -> "mail.com"
#                  "unknown" when there is no "@" or nothing after it
#   year           UTC calendar year of the Date header, None when unknown
#
#   The original-case address is kept next to the key for display.
# ============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..parsers.message_parser import ParsedMessage


UNKNOWN = "unknown"


@dataclass(frozen=True)
class NormalizedMessage:
    """One message ready for the index writer."""
    number: int
    sender_address: str        # original case, for display
    sender_key: str            # grouping key
    sender_domain: str
    subject: str
    sent_at: Optional[datetime]
    raw_date: Optional[str]
    year: Optional[int]
    size: int
    raw_size: int
    attachment_count: int
    recipients: str
    message_id: Optional[str]
    degraded: bool
    labels: List[str] = field(default_factory=list)


def sender_key(address: Optional[str]) -> str:
    """Canonical grouping key for a sender address."""
    key = (address or "").strip().lower()
    return key or UNKNOWN


def sender_domain(address: Optional[str]) -> str:
    """Lowercased text after the last '@', or UNKNOWN."""
    text = (address or "").strip()
    if "@" not in text:
        return UNKNOWN
    domain = text.rsplit("@", 1)[1].strip().lower()
    return domain or UNKNOWN


def year_of(timestamp: Optional[datetime]) -> Optional[int]:
    """Calendar year of a UTC timestamp; None stands for the unknown bucket."""
    if timestamp is None:
        return None
    return timestamp.year


def normalize(parsed: ParsedMessage, labels: Optional[List[str]] = None) -> NormalizedMessage:
    """
    Derive grouping keys from a parsed message.

    labels overrides the parsed label list (the ingest pipeline passes
    the "Unlabeled" fallback through here).
    """
    h = parsed.headers
    display = (h.sender or "").strip() or UNKNOWN
    return NormalizedMessage(
        number=parsed.number,
        sender_address=display,
        sender_key=sender_key(h.sender),
        sender_domain=sender_domain(h.sender),
        subject=h.subject or "",
        sent_at=h.date,
        raw_date=h.raw_date,
        year=year_of(h.date),
        size=parsed.size,
        raw_size=parsed.raw_size,
        attachment_count=parsed.attachment_count,
        recipients=", ".join(h.recipients),
        message_id=h.message_id,
        degraded=parsed.degraded,
        labels=list(h.labels if labels is None else labels),
    )
