"""Logging configuration helpers."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(level: str = "INFO") -> int:
    normalized = level.upper()
    if normalized not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    resolved = getattr(logging, normalized)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # basicConfig is a no-op once uvicorn has configured the root logger.
    logging.getLogger("prfocus").setLevel(resolved)
    return resolved
