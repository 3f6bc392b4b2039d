# ===========================================================================
# mboxscope -- TYPED EXCEPTIONS
# ===========================================================================
# FILE: mboxscope/core/exceptions.py
#
# WHAT THIS IS:
#   Custom error types for mboxscope. Each one carries a plain message,
#   a fix suggestion the CLI can print, and a short machine-readable code.
#
# HOW IT'S USED:
#   Fatal setup problems (unreadable mbox, unwritable index path, missing
#   index) are raised as these types and end the run with exit status 1:
#
#     try:
#         store = IndexStore.create(db_path)
#     except OutputNotWritableError as e:
#         print(f"[FAIL] {e} -- Fix: {e.fix_suggestion}")
#
#   Problems with a SINGLE message are never raised out of the pipeline.
#   They are counted (skipped / degraded / malformed) and shown in the
#   ingestion summary instead.
#
# HIERARCHY:
#   MboxScopeError
#     InputNotReadableError    IO-001
#     OutputNotWritableError   IO-002
#     IndexNotOpenableError    IDX-001
#     IndexWriteError          IDX-002
#     ConfigError              CONF-001
#     InvalidDimensionError    RPT-001
# ===========================================================================

from __future__ import annotations


class MboxScopeError(Exception):
    """
    Base class for all mboxscope errors.

    Attributes:
        fix_suggestion (str | None): Human-readable fix instruction.
        error_code (str | None): Machine-readable code like "IO-001".
    """

    def __init__(self, message, fix_suggestion=None, error_code=None):
        self.fix_suggestion = fix_suggestion
        self.error_code = error_code
        super().__init__(message)

    def to_dict(self):
        """Convert to dictionary for JSON logging or API error bodies."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": str(self),
            "fix_suggestion": self.fix_suggestion,
        }


# ---------------------------------------------------------------------------
# FILE / PATH ERRORS (IO-xxx)
# ---------------------------------------------------------------------------

class InputNotReadableError(MboxScopeError):
    """
    The mbox archive cannot be opened for reading.

    WHEN YOU'LL SEE THIS:
      - Typo in the mbox path
      - The Takeout archive was not unzipped yet
      - Permission denied on the file
    """
    def __init__(self, message=None, path=None):
        detail = f" Path: {path}" if path else ""
        super().__init__(
            message or f"Cannot read mbox archive.{detail}",
            fix_suggestion=(
                "Check that the path points to the .mbox file itself "
                "(not the Takeout .zip) and that you can read it."
            ),
            error_code="IO-001",
        )


class OutputNotWritableError(MboxScopeError):
    """
    The index file (or its folder) cannot be created or written.

    WHEN YOU'LL SEE THIS:
      - Output folder is read-only
      - Output path points at a directory
      - Disk is full
    """
    def __init__(self, message=None, path=None):
        detail = f" Path: {path}" if path else ""
        super().__init__(
            message or f"Cannot write index file.{detail}",
            fix_suggestion="Choose a writable output path for the .sqlite3 index.",
            error_code="IO-002",
        )


# ---------------------------------------------------------------------------
# INDEX ERRORS (IDX-xxx)
# ---------------------------------------------------------------------------

class IndexNotOpenableError(MboxScopeError):
    """
    An existing index could not be opened for reporting.

    WHEN YOU'LL SEE THIS:
      - The index path does not exist (run 'mboxscope index' first)
      - The file is not a SQLite database
      - The file is a SQLite database, but not one mboxscope wrote
    """
    def __init__(self, message=None, path=None):
        detail = f" Path: {path}" if path else ""
        super().__init__(
            message or f"Cannot open index.{detail}",
            fix_suggestion="Run 'mboxscope index MBOX DB' to build the index first.",
            error_code="IDX-001",
        )


class IndexWriteError(MboxScopeError):
    """
    The storage layer failed while writing one message.

    The failing message is rolled back; messages committed before it stay
    in the index.
    """
    def __init__(self, message=None, message_number=None):
        detail = f" (message #{message_number})" if message_number else ""
        super().__init__(
            message or f"Failed to write message to index{detail}.",
            fix_suggestion="Check free disk space and that nothing else is writing the index.",
            error_code="IDX-002",
        )


# ---------------------------------------------------------------------------
# CONFIG / REPORT ERRORS
# ---------------------------------------------------------------------------

class ConfigError(MboxScopeError):
    """
    Configuration is invalid (see validate_config()).
    """
    def __init__(self, message=None, problems=None):
        self.problems = list(problems or [])
        super().__init__(
            message or "Configuration is invalid: " + "; ".join(self.problems),
            fix_suggestion="Fix config/default_config.yaml or the MBOXSCOPE_* environment variables.",
            error_code="CONF-001",
        )


class InvalidDimensionError(MboxScopeError):
    """
    A report request named a breakout dimension that does not exist.
    """
    def __init__(self, dimension=None):
        super().__init__(
            f"Unknown breakout dimension: '{dimension}'.",
            fix_suggestion="Use one of: label, year, domain, sender.",
            error_code="RPT-001",
        )
