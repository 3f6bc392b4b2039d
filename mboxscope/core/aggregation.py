# ============================================================================
# mboxscope -- Aggregation Engine (mboxscope/core/aggregation.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Answers drill-down questions against a finished index:
#
#     "How many messages (and how many bytes) per label?"
#     "...for label=Inbox, per sender domain?"
#     "...for label=Inbox and domain=example.com, per year?"
#
#   Every answer is computed on the fly with one GROUP BY query. There is
#   no precomputed cube, so any combination of filters works.
#
# FILTERS:
#   label, year, domain, sender. All optional, all ANDed together.
#   A missing filter matches everything.
#
#   - label uses an EXISTS subquery, so a message carrying several labels
#     is still counted once in year/domain/sender breakouts.
#   - year "unknown" matches messages without a usable Date header.
#   - domain and sender are compared case-insensitively (both are stored
#     lowercased).
#
# ORDERING:
#   count descending, then value ascending (stable, deterministic).
#
# READ-ONLY:
#   This module never writes. It only needs an open IndexStore handle.
# ============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import InvalidDimensionError
from .index_store import IndexStore
from .normalizer import UNKNOWN


class Dimension(str, Enum):
    LABEL = "label"
    YEAR = "year"
    DOMAIN = "domain"
    SENDER = "sender"

    @classmethod
    def parse(cls, value: str) -> "Dimension":
        """Dimension from its URL name; "address" is accepted for sender."""
        name = (value or "").strip().lower()
        if name == "address":
            name = "sender"
        try:
            return cls(name)
        except ValueError:
            raise InvalidDimensionError(value) from None


# Display order of breakouts in the report
DIMENSION_ORDER = [Dimension.LABEL, Dimension.YEAR, Dimension.DOMAIN, Dimension.SENDER]

# SQL expression giving the grouping value per dimension (label is joined)
_YEAR_EXPR = f"COALESCE(CAST(m.year AS TEXT), '{UNKNOWN}')"
_GROUP_EXPR = {
    Dimension.LABEL: "l.name",
    Dimension.YEAR: _YEAR_EXPR,
    Dimension.DOMAIN: "m.sender_domain",
    Dimension.SENDER: "m.sender_key",
}


# -------------------------------------------------------------------
# Query and result types
# -------------------------------------------------------------------

@dataclass(frozen=True)
class AggregationQuery:
    """
    A set of drill-down filters. Immutable; with_filter()/without()
    return new queries so link building never mutates the current view.
    """
    label: Optional[str] = None
    year: Optional[str] = None
    domain: Optional[str] = None
    sender: Optional[str] = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "AggregationQuery":
        """
        Build from URL query parameters. Empty values are ignored;
        "address" is an alias for "sender".
        """
        def pick(*names: str) -> Optional[str]:
            for name in names:
                value = params.get(name)
                if value is not None and str(value).strip() != "":
                    return str(value).strip()
            return None

        return cls(
            label=pick("label"),
            year=pick("year"),
            domain=pick("domain"),
            sender=pick("sender", "address"),
        )

    def value(self, dimension: Dimension) -> Optional[str]:
        return getattr(self, dimension.value)

    def with_filter(self, dimension: Dimension, value: str) -> "AggregationQuery":
        return replace(self, **{dimension.value: str(value)})

    def without(self, dimension: Dimension) -> "AggregationQuery":
        return replace(self, **{dimension.value: None})

    def active(self) -> List[Tuple[Dimension, str]]:
        """Pinned filters in display order."""
        return [(d, self.value(d)) for d in DIMENSION_ORDER if self.value(d) is not None]

    def is_empty(self) -> bool:
        return not self.active()

    def to_params(self) -> Dict[str, str]:
        return {d.value: v for d, v in self.active()}


@dataclass
class AggregationRow:
    value: str
    count: int
    total_size: int


@dataclass
class AggregationResult:
    dimension: Dimension
    query: AggregationQuery
    rows: List[AggregationRow] = field(default_factory=list)
    limit: Optional[int] = None

    @property
    def total_count(self) -> int:
        return sum(r.count for r in self.rows)


@dataclass
class LargestMessage:
    number: int
    sender: str
    subject: str
    size: int
    raw_date: Optional[str]
    year: Optional[int]


# -------------------------------------------------------------------
# Engine
# -------------------------------------------------------------------

class AggregationEngine:
    """
    Runs breakout / totals / largest-message queries on an IndexStore.

    Usage:
        with IndexStore.open_readonly("mail.sqlite3") as store:
            engine = AggregationEngine(store)
            q = AggregationQuery(label="Inbox")
            for row in engine.breakout(q, Dimension.DOMAIN).rows:
                print(row.value, row.count, row.total_size)
    """

    def __init__(self, store: IndexStore):
        self.store = store

    @property
    def conn(self):
        return self.store.conn

    def breakout(
        self,
        query: AggregationQuery,
        dimension: Dimension,
        limit: Optional[int] = None,
    ) -> AggregationResult:
        """Message count and total size per value of one dimension."""
        if not isinstance(dimension, Dimension):
            dimension = Dimension.parse(dimension)
        where, params = self._where(query)
        group_expr = _GROUP_EXPR[dimension]

        joins = ""
        if dimension is Dimension.LABEL:
            joins = (
                " JOIN message_labels ml ON ml.message_id = m.id"
                " JOIN labels l ON l.id = ml.label_id"
            )

        sql = (
            f"SELECT {group_expr} AS value, COUNT(*) AS n, COALESCE(SUM(m.size), 0) AS total"
            f" FROM messages m{joins}{where}"
            f" GROUP BY value ORDER BY n DESC, value ASC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        rows = [
            AggregationRow(value=str(r[0]), count=int(r[1]), total_size=int(r[2]))
            for r in self.conn.execute(sql, params)
        ]
        return AggregationResult(dimension=dimension, query=query, rows=rows, limit=limit)

    def totals(self, query: AggregationQuery) -> Tuple[int, int]:
        """(message count, total size) of the filtered set."""
        where, params = self._where(query)
        row = self.conn.execute(
            f"SELECT COUNT(*), COALESCE(SUM(m.size), 0) FROM messages m{where}",
            params,
        ).fetchone()
        return int(row[0]), int(row[1])

    def largest_messages(self, query: AggregationQuery, limit: int = 30) -> List[LargestMessage]:
        """Biggest messages of the filtered set, largest first."""
        if limit <= 0:
            return []
        where, params = self._where(query)
        sql = (
            "SELECT m.id, m.sender_address, m.subject, m.size, m.raw_date, m.year"
            f" FROM messages m{where}"
            " ORDER BY m.size DESC, m.id ASC LIMIT ?"
        )
        return [
            LargestMessage(
                number=int(r[0]),
                sender=r[1],
                subject=r[2],
                size=int(r[3]),
                raw_date=r[4],
                year=r[5],
            )
            for r in self.conn.execute(sql, params + [int(limit)])
        ]

    @staticmethod
    def next_dimensions(query: AggregationQuery) -> List[Dimension]:
        """Dimensions not yet pinned by a filter, in display order."""
        return [d for d in DIMENSION_ORDER if query.value(d) is None]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _where(query: AggregationQuery) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []

        if query.label is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM message_labels fml"
                " JOIN labels fl ON fl.id = fml.label_id"
                " WHERE fml.message_id = m.id AND fl.name = ?)"
            )
            params.append(query.label)

        if query.year is not None:
            year = query.year.strip().lower()
            if year == UNKNOWN:
                clauses.append("m.year IS NULL")
            elif year.isdigit():
                clauses.append("m.year = ?")
                params.append(int(year))
            else:
                # Not a year: matches nothing
                clauses.append("0")

        if query.domain is not None:
            clauses.append("m.sender_domain = ?")
            params.append(query.domain.strip().lower())

        if query.sender is not None:
            clauses.append("m.sender_key = ?")
            params.append(query.sender.strip().lower())

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params
