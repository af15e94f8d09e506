from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from ..cancellation import CancelToken, CrawlCancelled
from ..observability import log_event
from ..retry import GiveUp, RetryPolicy, classify_exception
from ..types import (
    OUTCOME_PARTIAL,
    OUTCOME_SUCCESS,
    OUTCOME_TOTAL,
    CrawlTarget,
    FetchOutcome,
    FetchResult,
    NormalizedRecord,
)

logger = logging.getLogger("cafe-crawler")


@dataclass
class CallResult:
    """Result of one provider call: a value, or a classified error."""

    value: Any = None
    error_class: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_class is None


def call_with_retry(
    fn: Callable[[], CallResult],
    policy: RetryPolicy,
    cancel: CancelToken,
    *,
    source: str,
    label: str,
) -> CallResult:
    """Run one provider call under `policy`.

    `fn` reports expected conditions (queued, rate limited) through its
    CallResult; transport exceptions are classified here. The final
    CallResult is returned either way.
    """
    attempt = 0
    while True:
        cancel.raise_if_cancelled()
        try:
            result = fn()
        except CrawlCancelled:
            raise
        except Exception as exc:
            result = CallResult(
                error_class=classify_exception(exc),
                message=f"{type(exc).__name__}: {exc}",
            )
        if result.ok:
            return result

        attempt += 1
        decision = policy.decide(attempt, result.error_class)
        if isinstance(decision, GiveUp):
            logger.warning("%s %s gave up: %s (%s)", source, label, result.message, decision.reason)
            return result
        logger.warning(
            "%s %s failed (%s); retry %s in %.1fs",
            source,
            label,
            result.message,
            attempt,
            decision.delay_seconds,
        )
        log_event(
            "RETRY",
            source=source,
            label=label,
            attempt=attempt,
            delay_seconds=decision.delay_seconds,
            error_class=result.error_class,
        )
        cancel.sleep(decision.delay_seconds)


def success(records: List[NormalizedRecord], skipped: int = 0) -> FetchResult:
    return FetchResult(records=records, outcome=FetchOutcome(kind=OUTCOME_SUCCESS, skipped=skipped))


def partial(
    records: List[NormalizedRecord],
    error_class: Optional[str],
    message: Optional[str],
    skipped: int = 0,
) -> FetchResult:
    return FetchResult(
        records=records,
        outcome=FetchOutcome(kind=OUTCOME_PARTIAL, error_class=error_class, message=message, skipped=skipped),
    )


def total_failure(error_class: Optional[str], message: Optional[str], skipped: int = 0) -> FetchResult:
    return FetchResult(
        records=[],
        outcome=FetchOutcome(kind=OUTCOME_TOTAL, error_class=error_class, message=message, skipped=skipped),
    )


def to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip().replace(",", ""))
    except ValueError:
        return None


def to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return None


class SourceAdapter(ABC):
    """Fetches raw data for one target and normalizes it.

    Implementations return classified outcomes instead of raising; only
    CrawlCancelled escapes `fetch`.
    """

    source_type: str = ""

    @abstractmethod
    def fetch(self, target: CrawlTarget, max_results: int, cancel: CancelToken) -> FetchResult:
        raise NotImplementedError
