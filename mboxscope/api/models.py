# ============================================================================
# mboxscope -- API Pydantic Models (mboxscope/api/models.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Defines response schemas for the JSON side of the report server.
#   Everything the server returns as JSON goes through these models.
# ============================================================================

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """GET /health response."""
    status: str
    version: str


class BreakoutRow(BaseModel):
    value: str = Field(..., description="Label name, year, domain or sender address.")
    count: int = Field(..., description="Messages in this bucket.")
    total_size: int = Field(..., description="Sum of decoded message sizes, bytes.")


class BreakoutResponse(BaseModel):
    """GET /api/breakout/{dimension} response."""
    dimension: str
    filters: Dict[str, str]
    rows: List[BreakoutRow]
    total_count: int
    limit: Optional[int] = None


class IngestRunInfo(BaseModel):
    source_path: str
    started_at: str
    finished_at: Optional[str] = None
    status: str
    messages_seen: int
    messages_indexed: int
    messages_skipped: int
    messages_degraded: int
    malformed_records: int


class SummaryResponse(BaseModel):
    """GET /api/summary response."""
    filters: Dict[str, str]
    message_count: int
    total_size: int
    label_count: int
    latest_run: Optional[IngestRunInfo] = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx JSON response."""
    error_type: str
    error_code: Optional[str] = None
    message: str
    fix_suggestion: Optional[str] = None
