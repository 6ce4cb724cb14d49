import logging
from typing import Optional, Union

from config import LOG_LEVEL


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Set up logging for the maintenance tasks and hook adapters.

    `level` may be a number or a level name; it defaults to SANCTIONS_LOG_LEVEL.
    httpx logs every API request at INFO, so it is kept at WARNING unless
    debugging.
    """
    if level is None:
        level = LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=level,
    )
    logging.getLogger("httpx").setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    logger = logging.getLogger("sanctions")
    logger.setLevel(level)
    return logger
