"""Loguru sink configuration."""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    " {extra}"
)


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Replace the default loguru sink.

    Args:
        level: Minimum level for the stderr sink
        json_logs: Emit one JSON object per record instead of text
    """
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    logger.debug(f"Logging configured (level={level.upper()}, json={json_logs})")
