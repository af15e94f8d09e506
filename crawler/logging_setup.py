import logging
import os
import sys
from typing import Optional, Union

LOGGER_NAME = "cafe-crawler"
HANDLER_NAME = "cafe-crawler-console"

# Thread name separates the crawl loop from API-triggered runs.
LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers that drown out crawl events at INFO.
QUIET_LOGGERS = ("urllib3", "playwright", "asyncio")


def resolve_level(level: Optional[Union[str, int]] = None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level {level!r}")
    return value


def setup_logging(level: Optional[Union[str, int]] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    resolved = resolve_level(level)
    logger.setLevel(resolved)

    # Repeated CLI calls and app factory reloads reuse the one console handler.
    if not any(h.get_name() == HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    return logger
