# ============================================================================
# mboxscope -- Aggregation Engine Tests (tests/test_aggregation.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Runs drill-down queries against a real index built from small
#   hand-written archives, including the three-message reference
#   archive from conftest.py.
#
# USAGE:
#   pytest tests/test_aggregation.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

import pytest

from mboxscope.core.aggregation import (
    AggregationEngine,
    AggregationQuery,
    Dimension,
)
from mboxscope.core.exceptions import InvalidDimensionError
from mboxscope.core.index_store import IndexStore
from mboxscope.core.ingest import Ingestor

# Import shared helpers from conftest.py in the same directory.
import sys as _sys, os as _os
_sys.path.insert(0, _os.path.dirname(__file__))
from conftest import build_mbox, make_message


def counts(result):
    return {row.value: row.count for row in result.rows}


@pytest.fixture
def engine(reference_index):
    store = IndexStore.open_readonly(reference_index)
    yield AggregationEngine(store)
    store.close()


# -------------------------------------------------------------------
# The three-message reference archive
# -------------------------------------------------------------------

class TestReferenceScenario:
    def test_label_breakout(self, engine):
        result = engine.breakout(AggregationQuery(), Dimension.LABEL)
        assert [(r.value, r.count) for r in result.rows] == [
            ("Inbox", 2), ("Sent", 1), ("Starred", 1),
        ]

    def test_domain_breakout_for_inbox(self, engine):
        result = engine.breakout(AggregationQuery(label="Inbox"), Dimension.DOMAIN)
        assert counts(result) == {"example.com": 1, "example.org": 1}

    def test_year_breakout_for_sender(self, engine):
        result = engine.breakout(AggregationQuery(sender="a@example.com"), Dimension.YEAR)
        assert counts(result) == {"2020": 1, "2021": 1}

    def test_sender_breakout(self, engine):
        result = engine.breakout(AggregationQuery(), Dimension.SENDER)
        assert [(r.value, r.count) for r in result.rows] == [
            ("a@example.com", 2), ("b@example.org", 1),
        ]

    def test_filters_combine(self, engine):
        q = AggregationQuery(label="Inbox", year="2020", domain="example.org")
        assert counts(engine.breakout(q, Dimension.SENDER)) == {"b@example.org": 1}
        assert engine.totals(AggregationQuery(label="Inbox", year="2021")) == (0, 0)

    def test_no_match_is_empty(self, engine):
        result = engine.breakout(AggregationQuery(label="Nope"), Dimension.YEAR)
        assert result.rows == []
        assert engine.totals(AggregationQuery(label="Nope")) == (0, 0)

    def test_sender_filter_case_insensitive(self, engine):
        q = AggregationQuery(sender="A@Example.COM")
        assert engine.totals(q)[0] == 2

    def test_domain_filter_case_insensitive(self, engine):
        assert engine.totals(AggregationQuery(domain="EXAMPLE.ORG"))[0] == 1

    def test_dimension_given_as_string(self, engine):
        result = engine.breakout(AggregationQuery(), "address")
        assert result.dimension is Dimension.SENDER


class TestSumProperties:
    def test_label_counts_cover_every_message(self, engine):
        total, _ = engine.totals(AggregationQuery())
        label_sum = sum(r.count for r in engine.breakout(AggregationQuery(), Dimension.LABEL).rows)
        assert label_sum >= total

    @pytest.mark.parametrize("label", ["Inbox", "Sent", "Starred"])
    def test_year_breakout_sums_to_label_total(self, engine, label):
        q = AggregationQuery(label=label)
        total, size = engine.totals(q)
        rows = engine.breakout(q, Dimension.YEAR).rows
        assert sum(r.count for r in rows) == total
        assert sum(r.total_size for r in rows) == size

    @pytest.mark.parametrize("dim", [Dimension.YEAR, Dimension.DOMAIN, Dimension.SENDER])
    def test_single_valued_breakouts_sum_to_total(self, engine, dim):
        total, size = engine.totals(AggregationQuery())
        rows = engine.breakout(AggregationQuery(), dim).rows
        assert sum(r.count for r in rows) == total
        assert sum(r.total_size for r in rows) == size


class TestLargestMessages:
    def test_ordered_by_size(self, engine):
        rows = engine.largest_messages(AggregationQuery(), 10)
        sizes = [r.size for r in rows]
        assert len(rows) == 3
        assert sizes == sorted(sizes, reverse=True)
        assert rows[0].subject == "Third"

    def test_limit_and_filter(self, engine):
        rows = engine.largest_messages(AggregationQuery(label="Inbox"), 1)
        assert len(rows) == 1
        assert rows[0].subject == "Second"

    def test_zero_limit(self, engine):
        assert engine.largest_messages(AggregationQuery(), 0) == []


# -------------------------------------------------------------------
# Ordering, limits and the "unknown" buckets
# -------------------------------------------------------------------

@pytest.fixture
def messy_engine(tmp_path, write_mbox, test_config):
    messages = [
        make_message(sender="x@zeta.com", labels="Inbox"),
        make_message(sender="y@alpha.com", labels="Inbox"),
        make_message(sender="z@zeta.com", labels=None),
        make_message(sender=None, date=None, labels="Inbox"),
        make_message(sender="MAILER-DAEMON", date="garbage", labels="Inbox"),
    ]
    db_path = str(tmp_path / "messy.sqlite3")
    with IndexStore.create(db_path) as store:
        Ingestor(test_config, store).ingest(write_mbox(build_mbox(messages), "messy.mbox"))
    store = IndexStore.open_readonly(db_path)
    yield AggregationEngine(store)
    store.close()


class TestOrderingAndSentinels:
    def test_ties_broken_by_value(self, messy_engine):
        rows = messy_engine.breakout(AggregationQuery(), Dimension.DOMAIN).rows
        assert [(r.value, r.count) for r in rows] == [
            ("unknown", 2), ("zeta.com", 2), ("alpha.com", 1),
        ]

    def test_unknown_year_bucket(self, messy_engine):
        assert counts(messy_engine.breakout(AggregationQuery(), Dimension.YEAR)) == {
            "2020": 3, "unknown": 2,
        }

    def test_unknown_year_filter(self, messy_engine):
        assert messy_engine.totals(AggregationQuery(year="unknown"))[0] == 2

    def test_non_numeric_year_matches_nothing(self, messy_engine):
        assert messy_engine.totals(AggregationQuery(year="last-year"))[0] == 0

    def test_unlabeled_fallback(self, messy_engine):
        assert counts(messy_engine.breakout(AggregationQuery(), Dimension.LABEL)) == {
            "Inbox": 4, "Unlabeled": 1,
        }

    def test_limit(self, messy_engine):
        result = messy_engine.breakout(AggregationQuery(), Dimension.DOMAIN, limit=1)
        assert [r.value for r in result.rows] == ["unknown"]
        assert result.limit == 1

    def test_missing_sender_groups_as_unknown(self, messy_engine):
        assert counts(messy_engine.breakout(AggregationQuery(domain="unknown"), Dimension.SENDER)) == {
            "mailer-daemon": 1, "unknown": 1,
        }


# -------------------------------------------------------------------
# AggregationQuery helpers
# -------------------------------------------------------------------

class TestAggregationQuery:
    def test_from_params_ignores_blanks(self):
        q = AggregationQuery.from_params({"label": "Inbox", "year": "", "domain": "  "})
        assert q == AggregationQuery(label="Inbox")

    def test_address_alias(self):
        assert AggregationQuery.from_params({"address": "a@x.com"}).sender == "a@x.com"

    def test_with_filter_and_without(self):
        q = AggregationQuery(label="Inbox")
        narrowed = q.with_filter(Dimension.YEAR, 2021)
        assert narrowed.year == "2021"
        assert q.year is None
        assert narrowed.without(Dimension.LABEL) == AggregationQuery(year="2021")

    def test_active_and_params(self):
        q = AggregationQuery(sender="a@x.com", label="Inbox")
        assert q.active() == [(Dimension.LABEL, "Inbox"), (Dimension.SENDER, "a@x.com")]
        assert q.to_params() == {"label": "Inbox", "sender": "a@x.com"}
        assert not q.is_empty()
        assert AggregationQuery().is_empty()

    def test_next_dimensions(self):
        q = AggregationQuery(label="Inbox", domain="x.com")
        assert AggregationEngine.next_dimensions(q) == [Dimension.YEAR, Dimension.SENDER]

    def test_unknown_dimension(self):
        with pytest.raises(InvalidDimensionError) as exc:
            Dimension.parse("color")
        assert exc.value.error_code == "RPT-001"
        assert exc.value.__cause__ is None
        assert exc.value.__suppress_context__
