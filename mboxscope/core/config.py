# ============================================================================
# mboxscope -- Configuration (mboxscope/core/config.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   The single source of truth for every setting in mboxscope.
#
# HOW IT WORKS:
#   1. Python "dataclasses" define every setting with a sensible default
#   2. A YAML file (config/default_config.yaml) can override those defaults
#   3. Environment variables can override YAML (for machine-specific paths)
#
#   Priority: env vars > YAML file > hardcoded defaults
#
# USAGE:
#   from mboxscope.core.config import load_config
#   config = load_config(".")
#   print(config.ingest.label_header)      # "X-Gmail-Labels"
#   print(config.report.port)              # 31200
# ============================================================================

from __future__ import annotations

import os
import sys
import yaml
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


# -------------------------------------------------------------------
# Sub-configs: each one maps to a section in the YAML file
# -------------------------------------------------------------------

@dataclass
class PathsConfig:
    """
    Default input archive and index locations.

    The CLI always takes explicit paths; these are only used when an
    argument is omitted. MBOXSCOPE_MBOX / MBOXSCOPE_DB override YAML.
    """
    mbox: str = ""                 # Path to the Takeout .mbox file
    database: str = ""             # Path to the .sqlite3 index

    def __post_init__(self) -> None:
        env_mbox = os.getenv("MBOXSCOPE_MBOX")
        if env_mbox:
            self.mbox = env_mbox
        env_db = os.getenv("MBOXSCOPE_DB")
        if env_db:
            self.database = env_db

        if self.mbox:
            self.mbox = os.path.normpath(os.path.expandvars(self.mbox))
        if self.database:
            self.database = os.path.normpath(os.path.expandvars(self.database))


# Numeric env overrides; a value that is not a whole number is ignored here
# and reported by validate_config()
_INT_ENV_VARS = {
    "MBOXSCOPE_COMMIT_EVERY": "ingest.commit_every",
    "MBOXSCOPE_PORT": "report.port",
}


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass
class IngestConfig:
    """
    Ingestion pipeline settings.

    label_header: Google Takeout writes Gmail labels into this header as
    one comma-separated value. Repeated headers are also accepted.

    commit_every: messages per SQLite transaction. Each message is still
    written atomically (SAVEPOINT); this only controls how often the
    batch is made durable. An interrupted run keeps every committed batch.
    """
    label_header: str = "X-Gmail-Labels"
    unlabeled_label: str = "Unlabeled"   # Label given to messages with no label header
    max_mime_depth: int = 32             # Nested multipart levels before we stop walking
    commit_every: int = 500
    progress_every: int = 1000           # Log a progress line every N messages

    def __post_init__(self) -> None:
        env_commit = _env_int("MBOXSCOPE_COMMIT_EVERY")
        if env_commit is not None:
            self.commit_every = env_commit


@dataclass
class ReportConfig:
    """
    Report server settings. Local, single-user, no authentication.
    """
    host: str = "127.0.0.1"
    port: int = 31200
    top_n: int = 30                 # Rows shown for domain/sender breakouts
    largest_messages: int = 30      # Rows in the "largest messages" table

    def __post_init__(self) -> None:
        env_port = _env_int("MBOXSCOPE_PORT")
        if env_port is not None:
            self.port = env_port


@dataclass
class LoggingConfig:
    """Where structured log files are written."""
    log_dir: str = "logs"

    def __post_init__(self) -> None:
        env_dir = os.getenv("MBOXSCOPE_LOG_DIR")
        if env_dir:
            self.log_dir = env_dir


# -------------------------------------------------------------------
# Master Config -- the one object that holds everything
# -------------------------------------------------------------------

@dataclass
class Config:
    """
    Master configuration object for mboxscope.

    Example:
        config = load_config(".")
        print(config.paths.database)
        print(config.ingest.commit_every)     # 500
    """
    paths: PathsConfig = field(default_factory=PathsConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# -------------------------------------------------------------------
# Helper: YAML dict -> dataclass (with safety net)
# -------------------------------------------------------------------

def _dict_to_dataclass(cls, data: dict):
    """
    Build a dataclass from a dictionary, ignoring unknown keys.

    If a YAML key does NOT match any dataclass field name, print a
    warning to stderr and suggest the closest field name (simple
    substring match), then fall back to the default for that field.
    """
    known_fields = {f.name for f in dataclasses.fields(cls)}

    filtered = {}
    for k, v in (data or {}).items():
        if k in known_fields:
            filtered[k] = v
        else:
            suggestion = ""
            for field_name in known_fields:
                if k in field_name or field_name in k:
                    suggestion = " Did you mean '" + field_name + "'?"
                    break
            print(
                "  [WARN] config/" + cls.__name__ + ": YAML key '"
                + k + "' is not a recognized setting"
                + " -- IGNORED (using default)." + suggestion,
                file=sys.stderr,
            )

    return cls(**filtered)


# -------------------------------------------------------------------
# Main entry point: load_config()
# -------------------------------------------------------------------

def load_config(
    project_dir: str = ".",
    config_filename: str = "default_config.yaml",
) -> Config:
    """
    Load configuration from YAML file, with defaults and env var overrides.

    Parameters
    ----------
    project_dir : str
        Folder containing the config/ subfolder.

    config_filename : str
        Name of the YAML config file inside the config/ subfolder.

    Returns
    -------
    Config
        Fully resolved configuration object. A missing YAML file is not
        an error; all defaults are used.
    """
    config_path = Path(project_dir) / "config" / config_filename

    yaml_data: dict = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                yaml_data = raw

    return Config(
        paths=_dict_to_dataclass(PathsConfig, yaml_data.get("paths", {})),
        ingest=_dict_to_dataclass(IngestConfig, yaml_data.get("ingest", {})),
        report=_dict_to_dataclass(ReportConfig, yaml_data.get("report", {})),
        logging=_dict_to_dataclass(LoggingConfig, yaml_data.get("logging", {})),
    )


def validate_config(config: Config) -> List[str]:
    """
    Check a Config object for problems. Returns a list of error messages.
    Empty list = everything is valid.
    """
    errors: List[str] = []

    if not config.ingest.label_header.strip():
        errors.append("ingest.label_header is empty.")

    if not config.ingest.unlabeled_label.strip():
        errors.append("ingest.unlabeled_label is empty.")

    if config.ingest.max_mime_depth < 1:
        errors.append(
            "ingest.max_mime_depth must be at least 1, got "
            + str(config.ingest.max_mime_depth)
        )

    if config.ingest.commit_every < 1:
        errors.append(
            "ingest.commit_every must be at least 1, got "
            + str(config.ingest.commit_every)
        )

    if config.ingest.progress_every < 1:
        errors.append("ingest.progress_every must be at least 1.")

    if not (0 < config.report.port < 65536):
        errors.append("report.port out of range: " + str(config.report.port))

    if config.report.top_n < 1:
        errors.append("report.top_n must be at least 1.")

    if config.report.largest_messages < 0:
        errors.append("report.largest_messages cannot be negative.")

    for name, key in _INT_ENV_VARS.items():
        value = os.getenv(name)
        if value and _env_int(name) is None:
            errors.append(f"{name}={value!r} is not a whole number (overrides {key}).")

    return errors


def ensure_directories(config: Config) -> None:
    """Create the log directory and the index's parent folder if needed."""
    if config.paths.database:
        db_dir = os.path.dirname(config.paths.database)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    if config.logging.log_dir:
        os.makedirs(config.logging.log_dir, exist_ok=True)
