"""
storage/config.py

Runtime configuration for the counseling platform.

Environment variables
---------------------
COUNSELOR_ID           Identity of the single counselor principal (required).
SESSION_BREAK_SECONDS  Global cooldown between session starts (default 1800).
AUDIT_DB_PATH          SQLite file for the public event log (optional; events
                       stay in memory only when unset).

APP_DATA_KEY is read separately by :mod:`storage.crypto`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_BREAK_DURATION = 1800


class PlatformConfig(BaseModel):
    counselor: str = Field(min_length=1)
    break_duration_seconds: int = Field(default=DEFAULT_BREAK_DURATION, ge=0)
    audit_db_path: Path | None = None


def load_config(environ: dict[str, str] | None = None) -> PlatformConfig:
    """
    Build a :class:`PlatformConfig` from environment variables.

    Args:
        environ: Mapping to read instead of ``os.environ`` (used by tests).

    Raises:
        ValueError: If COUNSELOR_ID is missing.
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    env = os.environ if environ is None else environ

    counselor = env.get("COUNSELOR_ID", "").strip()
    if not counselor:
        raise ValueError("COUNSELOR_ID environment variable is not set.")

    config = PlatformConfig(
        counselor=counselor,
        break_duration_seconds=env.get("SESSION_BREAK_SECONDS", DEFAULT_BREAK_DURATION),
        audit_db_path=env.get("AUDIT_DB_PATH") or None,
    )
    logger.info(
        "Loaded config: counselor=%s break=%ds audit_db=%s",
        config.counselor,
        config.break_duration_seconds,
        config.audit_db_path,
    )
    return config
