"""Runtime configuration, read from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from .retry import RetryPolicy

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    value = int(raw) if raw else default
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name, "").strip()
    value = float(raw) if raw else default
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class CrawlSettings:
    enabled: bool = True
    batch_size: int = 3
    idle_interval_seconds: float = 1800.0
    disabled_poll_seconds: float = 300.0
    target_delay_seconds: float = 30.0
    retry_base_seconds: float = 7200.0
    retry_multiplier: float = 2.0
    retry_max_attempts: int = 5
    max_results_default: int = 15
    history_error_chars: int = 2000
    map_search_queries: list[str] = field(default_factory=lambda: ["board game cafe"])
    map_query_delay_seconds: float = 2.0
    bgg_api_base_url: str = "https://boardgamegeek.com/xmlapi2"
    bgg_api_token: str = ""
    bgg_retry_base_seconds: float = 3.0
    bgg_max_retries: int = 5
    http_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "CrawlSettings":
        return cls(
            enabled=_env_flag("CRAWL_ENABLED", "1"),
            batch_size=_env_int("CRAWL_BATCH_SIZE", 3, minimum=1),
            idle_interval_seconds=_env_float("CRAWL_IDLE_INTERVAL_SECONDS", 1800.0),
            disabled_poll_seconds=_env_float("CRAWL_DISABLED_POLL_SECONDS", 300.0),
            target_delay_seconds=_env_float("CRAWL_TARGET_DELAY_SECONDS", 30.0),
            retry_base_seconds=_env_float("CRAWL_RETRY_BASE_SECONDS", 7200.0),
            retry_multiplier=_env_float("CRAWL_RETRY_MULTIPLIER", 2.0, minimum=1.0),
            retry_max_attempts=_env_int("CRAWL_RETRY_MAX_ATTEMPTS", 5, minimum=1),
            max_results_default=_env_int("CRAWL_MAX_RESULTS", 15, minimum=1),
            history_error_chars=_env_int("CRAWL_HISTORY_ERROR_CHARS", 2000, minimum=1),
            map_search_queries=_env_list("MAP_SEARCH_QUERIES", "board game cafe"),
            map_query_delay_seconds=_env_float("MAP_QUERY_DELAY_SECONDS", 2.0),
            bgg_api_base_url=os.getenv(
                "BGG_API_BASE_URL", "https://boardgamegeek.com/xmlapi2"
            ).rstrip("/"),
            bgg_api_token=os.getenv("BGG_API_TOKEN", "").strip(),
            bgg_retry_base_seconds=_env_float("BGG_RETRY_BASE_SECONDS", 3.0),
            bgg_max_retries=_env_int("BGG_MAX_RETRIES", 5, minimum=1),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 30.0, minimum=1.0),
        )

    def target_retry_policy(self) -> RetryPolicy:
        """Coarse-grained policy: whole-target rescheduling via next_crawl_at."""
        return RetryPolicy(
            base_delay_seconds=self.retry_base_seconds,
            multiplier=self.retry_multiplier,
            max_attempts=self.retry_max_attempts,
        )

    def api_retry_policy(self) -> RetryPolicy:
        """Fine-grained policy: a single provider call inside an adapter."""
        return RetryPolicy(
            base_delay_seconds=self.bgg_retry_base_seconds,
            multiplier=2.0,
            max_attempts=self.bgg_max_retries,
        )

    def summary(self) -> dict:
        return {
            "enabled": self.enabled,
            "batch_size": self.batch_size,
            "idle_interval_seconds": self.idle_interval_seconds,
            "target_delay_seconds": self.target_delay_seconds,
            "retry_base_seconds": self.retry_base_seconds,
            "retry_multiplier": self.retry_multiplier,
            "retry_max_attempts": self.retry_max_attempts,
            "max_results_default": self.max_results_default,
        }
