"""Logging setup.

Diagnostics go to stderr so stdout stays free for a protocol host.
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER = "skillsync"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stderr handler to the package logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    if not any(getattr(h, "_skillsync", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        handler._skillsync = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


__all__ = ["configure_logging", "ROOT_LOGGER"]
