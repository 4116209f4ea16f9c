"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGING_CONFIGURED = False

_SECTION_WIDTH = 80
_SUBSECTION_WIDTH = 60
_LABEL_WIDTH = 20


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
        )
        _LOGGING_CONFIGURED = True
    return logging.getLogger(name)


def log_section(logger: logging.Logger, title: str) -> None:
    """Log a full-width banner around ``title``."""
    logger.info("=" * _SECTION_WIDTH)
    logger.info(title.center(_SECTION_WIDTH))
    logger.info("=" * _SECTION_WIDTH)


def log_subsection(logger: logging.Logger, title: str) -> None:
    logger.info("-" * _SUBSECTION_WIDTH)
    logger.info(" %s", title)
    logger.info("-" * _SUBSECTION_WIDTH)


def log_field(logger: logging.Logger, label: str, value: object) -> None:
    logger.info("%s: %s", label.ljust(_LABEL_WIDTH), value)
