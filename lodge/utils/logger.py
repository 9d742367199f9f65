"""Process-wide logging setup driven by `LODGE_LOG_LEVEL` and `LODGE_LOG_FORMAT`."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from lodge.utils.config import get_settings


_configured = False


def configure_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    *,
    force: bool = False,
) -> None:
    """Install one stdout handler for every lodge logger.

    Explicit arguments win over settings. Later calls are ignored unless
    `force` is set, which replaces the existing handler.
    """
    global _configured
    if _configured and not force:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()
    if not isinstance(logging.getLevelName(resolved_level), int):
        raise ValueError(f"unknown log level {resolved_level!r}")

    logging.basicConfig(
        level=resolved_level,
        format=log_format or settings.log_format,
        stream=sys.stdout,
        force=force,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
