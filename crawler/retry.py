"""Backoff decisions shared by adapters (per call) and the scheduler (per target)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

import requests
from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger("cafe-crawler")

TRANSIENT = "transient"
PERMANENT = "permanent"

TRANSIENT_STATUS_CODES = {202, 408, 429, 500, 502, 503, 504}
PERMANENT_STATUS_CODES = {400, 401, 403, 404, 410, 422}


class InvalidTargetError(ValueError):
    """The target itself cannot be crawled (unresolvable location, missing binding)."""


class ProviderStatusError(Exception):
    """A provider answered with an HTTP status the adapter cannot use."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"provider returned HTTP {status_code}")


@dataclass(frozen=True)
class RetryAfter:
    delay_seconds: float


@dataclass(frozen=True)
class GiveUp:
    reason: str


Decision = Union[RetryAfter, GiveUp]


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float
    multiplier: float = 2.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        attempt = max(1, min(attempt, self.max_attempts))
        return self.base_delay_seconds * (self.multiplier ** (attempt - 1))

    def ceiling_delay(self) -> float:
        return self.delay_for(self.max_attempts)

    def decide(self, attempt: int, error_class: str) -> Decision:
        """attempt is the 1-based count of failures observed so far."""
        if error_class != TRANSIENT:
            return GiveUp("permanent error")
        if attempt > self.max_attempts:
            return GiveUp(f"retry ceiling reached after {self.max_attempts} attempts")
        return RetryAfter(self.delay_for(attempt))


def classify_status(status_code: int) -> str:
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return TRANSIENT
    return PERMANENT


def classify_exception(exc: BaseException) -> str:
    if isinstance(exc, ProviderStatusError):
        return classify_status(exc.status_code)
    if isinstance(exc, (requests.Timeout, requests.ConnectionError, TimeoutError, ConnectionError)):
        return TRANSIENT
    if isinstance(exc, OperationalError) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return TRANSIENT
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return classify_status(exc.response.status_code)
    # Browser timeouts (playwright TimeoutError) without importing playwright here.
    if type(exc).__name__ == "TimeoutError":
        return TRANSIENT
    if isinstance(exc, (InvalidTargetError, ValueError, KeyError, ImportError)):
        return PERMANENT
    logger.debug("Unclassified error %s treated as transient", type(exc).__name__)
    return TRANSIENT
