# ============================================================================
# mboxscope -- Structured Logger (mboxscope/monitoring/logger.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Sets up structured (JSON) logging for the ingestion pipeline. Every
#   important event (ingest started, progress, message skipped, ingest
#   finished) is written as one JSON object per line.
#
# LOG FILE TYPES:
#   - app_YYYY-MM-DD.log:   General pipeline events
#   - error_YYYY-MM-DD.log: Messages that could not be parsed or written
#
# HOW TO USE (from other code):
#   from mboxscope.monitoring.logger import get_app_logger
#   logger = get_app_logger("ingest")
#   logger.info("ingest_started", mbox="All mail.mbox")
#
# DEPENDENCIES:
#   - structlog: structured logging library that outputs JSON
#   - Python's built-in logging module (structlog builds on top of it)
# ============================================================================

import sys
import logging
from pathlib import Path
from typing import Optional, Dict, Any
import structlog
from datetime import datetime


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

class LoggerSetup:
    """Initialize and configure structlog for mboxscope"""

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._configured = False

    def setup(self) -> None:
        """Configure structlog with timestamped log files"""
        if self._configured:
            return

        # Standard logging for third-party libraries (uvicorn, etc.)
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=logging.WARNING,
        )

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._configured = True

    def get_file_logger(self, name: str, log_type: str = "app") -> structlog.BoundLogger:
        """
        Get a logger that writes to a specific log file.
        log_type: "app", "error"
        """
        self.setup()
        qualified = f"{log_type}.{name}"
        logger = structlog.get_logger(qualified)

        log_file = self.log_dir / f"{log_type}_{self._get_date_str()}.log"
        py_logger = logging.getLogger(qualified)

        # One handler per (logger, file); drop handlers for an old folder or day
        for h in list(py_logger.handlers):
            if isinstance(h, logging.FileHandler) and Path(h.baseFilename) != log_file.resolve():
                py_logger.removeHandler(h)
                h.close()
        already = any(
            isinstance(h, logging.FileHandler)
            and Path(h.baseFilename) == log_file.resolve()
            for h in py_logger.handlers
        )
        if not already:
            handler = logging.FileHandler(log_file, encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(message)s"))
            py_logger.addHandler(handler)
        py_logger.setLevel(logging.DEBUG)
        # File only; keep JSON lines off the console progress output
        py_logger.propagate = False

        return logger

    @staticmethod
    def _get_date_str() -> str:
        """Get current date as YYYY-MM-DD string"""
        return datetime.now().strftime("%Y-%m-%d")


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

_logger_setup: Optional[LoggerSetup] = None


def initialize_logging(log_dir: str = "logs") -> LoggerSetup:
    """
    Initialize logging (call once at app startup).

    Calling again with a different log_dir moves file output there; loggers
    fetched afterwards write only to the new folder.
    """
    global _logger_setup
    if _logger_setup is None or _logger_setup.log_dir != Path(log_dir):
        _logger_setup = LoggerSetup(log_dir)
        _logger_setup.setup()
    return _logger_setup


def get_app_logger(name: str = "app") -> structlog.BoundLogger:
    """Get app logger (writes to app_YYYY-MM-DD.log)"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_file_logger(name, "app")


def get_error_logger(name: str = "error") -> structlog.BoundLogger:
    """Get error logger (writes to error_YYYY-MM-DD.log)"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_file_logger(name, "error")


# ============================================================================
# LOG ENTRY BUILDERS (for consistent structured data)
# ============================================================================

class IngestLogEntry:
    """Builder for the end-of-run ingestion log entry"""

    @staticmethod
    def build(
        mbox: str,
        database: str,
        messages_seen: int,
        messages_indexed: int,
        messages_skipped: int,
        messages_degraded: int,
        malformed_records: int,
        elapsed_seconds: float,
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build a structured ingestion summary entry"""
        return {
            "mbox": mbox,
            "database": database,
            "messages_seen": messages_seen,
            "messages_indexed": messages_indexed,
            "messages_skipped": messages_skipped,
            "messages_degraded": messages_degraded,
            "malformed_records": malformed_records,
            "elapsed_seconds": round(elapsed_seconds, 2),
            "error": error,
            "timestamp": datetime.now().isoformat(),
        }


class SkipLogEntry:
    """Builder for one skipped or malformed message"""

    @staticmethod
    def build(number: int, offset: int, reason: str) -> Dict[str, Any]:
        return {
            "message_number": number,
            "byte_offset": offset,
            "reason": reason,
        }
