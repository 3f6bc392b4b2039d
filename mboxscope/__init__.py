# ============================================================================
# mboxscope -- Gmail Takeout mbox indexer and drill-down report
# ============================================================================
#
#   mboxscope index  "All mail Including Spam and Trash.mbox" mail.sqlite3
#   mboxscope report mail.sqlite3
# ============================================================================

__version__ = "1.0.0"
