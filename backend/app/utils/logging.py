"""Structured logging helpers."""

import logging
from typing import Any


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at application start."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def log_structured(
    logger: logging.Logger, level: int, message: str, **fields: Any
) -> None:
    """Log a message with machine-readable fields under ``extra["structured"]``.

    Args:
        logger: Module logger
        level: Logging level (e.g. logging.INFO)
        message: Human-readable message
        **fields: Structured data (ids, counts, outcomes); None values dropped
    """
    log_data = {key: value for key, value in fields.items() if value is not None}
    logger.log(level, message, extra={"structured": log_data})
