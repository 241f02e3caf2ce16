"""
QueryLens Configuration
=======================

Environment-driven settings (loaded from .env via python-dotenv) and the
shared logging setup used by the API process and the CLI-style test runs.

Environment variables:
    QUERYLENS_SQL_DIALECT     Parser dialect (default: postgres)
    QUERYLENS_MAX_DEPTH       Max nesting depth walked by the extractor (default: 64)
    QUERYLENS_LOG_LEVEL       Log level for QueryLens loggers (default: INFO)
    QUERYLENS_CORS_ORIGINS    Comma-separated allowed origins (default: *)
    QUERYLENS_MAX_SQL_LENGTH  Max accepted SQL/DDL length in chars (default: 100000)
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers we own; everything else stays at WARNING
APP_LOGGERS = [
    "main",
    "config",
    "sql_ast",
    "sql_extractor",
    "schema_parser",
    "schema_validator",
]


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""
    sql_dialect: str = "postgres"
    max_depth: int = 64
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    max_sql_length: int = 100_000


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={value}, using {default}")
        return default
    return value


def load_settings() -> Settings:
    """Read settings from the environment (no caching)."""
    origins = os.getenv("QUERYLENS_CORS_ORIGINS", "*")
    return Settings(
        sql_dialect=os.getenv("QUERYLENS_SQL_DIALECT", "postgres").strip().lower() or "postgres",
        max_depth=_int_from_env("QUERYLENS_MAX_DEPTH", 64),
        log_level=os.getenv("QUERYLENS_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()] or ["*"],
        max_sql_length=_int_from_env("QUERYLENS_MAX_SQL_LENGTH", 100_000),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return load_settings()


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging once for the process.

    Libraries log at WARNING; QueryLens modules log at the configured level.
    """
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    app_level = getattr(logging, (level or get_settings().log_level), logging.INFO)
    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(app_level)
