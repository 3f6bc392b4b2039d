# ============================================================================
# mboxscope -- Report Routes (mboxscope/api/routes.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Defines the report endpoints. Each one is a thin wrapper around
#   AggregationEngine; all the SQL lives in core/aggregation.py.
#
# ENDPOINTS:
#   GET /                          HTML drill-down page
#   GET /api/breakout/{dimension}  One breakout as JSON
#   GET /api/summary               Totals + last ingest run as JSON
#   GET /health                    Fast health check (no database access)
#
# FILTER PARAMETERS (all endpoints except /health):
#   ?label=Inbox&year=2021&domain=example.com&sender=bob@example.com
#   "address" is accepted as an alias for "sender".
# ============================================================================

from __future__ import annotations

import logging
from typing import Iterator, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse

from mboxscope.api.models import (
    BreakoutResponse,
    BreakoutRow,
    HealthResponse,
    IngestRunInfo,
    SummaryResponse,
)
from mboxscope.core.aggregation import (
    AggregationEngine,
    AggregationQuery,
    Dimension,
)
from mboxscope.core.index_store import IndexStore

logger = logging.getLogger(__name__)

router = APIRouter()

# Breakouts that can have thousands of rows are capped in the HTML view
_CAPPED_DIMENSIONS = {Dimension.DOMAIN, Dimension.SENDER}


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_store(request: Request) -> Iterator[IndexStore]:
    """One read-only index handle per request, closed afterwards."""
    store = IndexStore.open_readonly(request.app.state.index_path)
    try:
        yield store
    finally:
        store.close()


def get_query(request: Request) -> AggregationQuery:
    return AggregationQuery.from_params(request.query_params)


def _version():
    from mboxscope.api.server import APP_VERSION
    return APP_VERSION


def _link(query: AggregationQuery) -> str:
    params = query.to_params()
    return "/?" + urlencode(params) if params else "/"


# -------------------------------------------------------------------
# GET /health
# -------------------------------------------------------------------
@router.get("/health", response_model=HealthResponse)
async def health():
    """Fast health check. Returns 200 if the server is running."""
    return HealthResponse(status="ok", version=_version())


# -------------------------------------------------------------------
# GET /
# -------------------------------------------------------------------
@router.get("/", response_class=HTMLResponse)
def report_page(
    request: Request,
    query: AggregationQuery = Depends(get_query),
    store: IndexStore = Depends(get_store),
):
    """The drill-down page: totals, active filters, breakouts, largest messages."""
    cfg = request.app.state.config.report
    engine = AggregationEngine(store)

    total_count, total_size = engine.totals(AggregationQuery())
    filtered_count, filtered_size = engine.totals(query)

    filters = [
        {
            "dimension": dim.value,
            "value": value,
            "remove_url": _link(query.without(dim)),
        }
        for dim, value in query.active()
    ]

    breakouts = []
    for dim in engine.next_dimensions(query):
        limit = cfg.top_n if dim in _CAPPED_DIMENSIONS else None
        result = engine.breakout(query, dim, limit=limit)
        breakouts.append({
            "dimension": dim.value,
            "limit": limit,
            "rows": [
                {
                    "value": row.value,
                    "count": row.count,
                    "total_size": row.total_size,
                    "url": _link(query.with_filter(dim, row.value)),
                }
                for row in result.rows
            ],
        })

    largest = engine.largest_messages(query, cfg.largest_messages)

    return request.app.state.templates.TemplateResponse(
        request,
        "report.html",
        {
            "version": _version(),
            "total_count": total_count,
            "total_size": total_size,
            "filtered_count": filtered_count,
            "filtered_size": filtered_size,
            "filters": filters,
            "clear_url": "/",
            "breakouts": breakouts,
            "largest": largest,
        },
    )


# -------------------------------------------------------------------
# GET /api/breakout/{dimension}
# -------------------------------------------------------------------
@router.get("/api/breakout/{dimension}", response_model=BreakoutResponse)
def breakout(
    dimension: str,
    limit: Optional[int] = Query(None, ge=1, description="Maximum rows to return."),
    query: AggregationQuery = Depends(get_query),
    store: IndexStore = Depends(get_store),
):
    """Count and total size per value of one dimension, filtered."""
    dim = Dimension.parse(dimension)
    result = AggregationEngine(store).breakout(query, dim, limit=limit)
    return BreakoutResponse(
        dimension=dim.value,
        filters=query.to_params(),
        rows=[
            BreakoutRow(value=r.value, count=r.count, total_size=r.total_size)
            for r in result.rows
        ],
        total_count=result.total_count,
        limit=limit,
    )


# -------------------------------------------------------------------
# GET /api/summary
# -------------------------------------------------------------------
@router.get("/api/summary", response_model=SummaryResponse)
def summary(
    query: AggregationQuery = Depends(get_query),
    store: IndexStore = Depends(get_store),
):
    """Totals of the filtered set plus the most recent ingest run."""
    count, size = AggregationEngine(store).totals(query)
    run = store.latest_run()
    return SummaryResponse(
        filters=query.to_params(),
        message_count=count,
        total_size=size,
        label_count=store.counts()["labels"],
        latest_run=IngestRunInfo(**{k: v for k, v in run.items() if k != "id"}) if run else None,
    )
