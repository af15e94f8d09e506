from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("cafe-crawler")


def log_event(event: str, **payload: Any) -> None:
    logger.info("CRAWL_%s %s", event, json.dumps(payload, default=str, sort_keys=True))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands timestamps back naive; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_error(message: str | None, limit: int = 2000) -> str | None:
    if message is None:
        return None
    return message if len(message) <= limit else message[:limit]


class StepTimer:
    def __init__(self) -> None:
        self.started = time.perf_counter()

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)
