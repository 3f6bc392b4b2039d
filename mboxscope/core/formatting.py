# ============================================================================
# mboxscope -- Display formatting (mboxscope/core/formatting.py)
# ============================================================================
#
# Small helpers shared by the ingest printout and the HTML report.
# ============================================================================

from __future__ import annotations


def fmt_size(b) -> str:
    """Format bytes as human-readable string (KB, MB, GB)."""
    b = float(b or 0)
    if b < 1024:
        return f"{b:.0f} B"
    elif b < 1024**2:
        return f"{b / 1024:.1f} KB"
    elif b < 1024**3:
        return f"{b / 1024**2:.1f} MB"
    return f"{b / 1024**3:.2f} GB"


def fmt_count(n) -> str:
    """Thousands separators: 1234567 -> '1,234,567'."""
    return f"{int(n or 0):,}"
