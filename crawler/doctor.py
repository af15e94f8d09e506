from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from .db import DB_URL_ALIASES, check_db_connectivity, env_flag
from .schema import crawl_history, crawl_targets, missing_tables
from .settings import CrawlSettings
from .types import STATUS_FAILED

logger = logging.getLogger("cafe-crawler")


@dataclass
class DoctorReport:
    ok: bool
    failures: list[str]
    warnings: list[str]

    def to_dict(self) -> dict:
        return {"ok": self.ok, "failures": self.failures, "warnings": self.warnings}


def _check_env() -> tuple[list[str], list[str]]:
    failures: list[str] = []
    warnings: list[str] = []
    if not any(os.getenv(k) for k in DB_URL_ALIASES):
        failures.append("Missing database URL env (DATABASE_URL or supported aliases)")

    try:
        settings = CrawlSettings.from_env()
    except ValueError as exc:
        failures.append(f"Invalid crawl settings: {exc}")
    else:
        if not settings.enabled:
            warnings.append("CRAWL_ENABLED is off (background loop will idle)")
        if not settings.bgg_api_token:
            warnings.append("BGG_API_TOKEN not set (collection API may reject requests)")

    return failures, warnings


def _check_playwright() -> list[str]:
    warnings: list[str] = []
    try:
        import playwright  # noqa: F401
    except ImportError:
        warnings.append("Playwright package not installed (map and website sources will fail)")
    return warnings


def _check_tables(engine: Engine) -> tuple[list[str], list[str]]:
    failures = [f"Missing required table: {name}" for name in missing_tables(engine)]
    warnings: list[str] = []
    if failures:
        return failures, warnings

    with engine.begin() as conn:
        targets = conn.execute(
            select(func.count()).select_from(crawl_targets).where(crawl_targets.c.is_active.is_(True))
        ).scalar_one()
        stuck = conn.execute(
            select(func.count())
            .select_from(crawl_targets)
            .where(crawl_targets.c.last_crawl_status == STATUS_FAILED)
            .where(crawl_targets.c.next_crawl_at.is_(None))
        ).scalar_one()
        runs = conn.execute(select(func.count()).select_from(crawl_history)).scalar_one()

    if not targets:
        warnings.append("No active crawl targets (run `seed` or `add-target`)")
    if stuck:
        warnings.append(f"{stuck} target(s) failed permanently and wait for a reset")
    if not runs:
        warnings.append("No crawl_history found")
    return failures, warnings


def run_doctor(engine: Engine) -> DoctorReport:
    failures, warnings = _check_env()

    try:
        check_db_connectivity(engine)
    except Exception as exc:
        failures.append(f"DB connectivity failed: {type(exc).__name__}: {exc}")
        report = DoctorReport(ok=False, failures=failures, warnings=warnings)
        _log_report(report)
        return report

    table_failures, table_warnings = _check_tables(engine)
    failures.extend(table_failures)
    warnings.extend(table_warnings)
    warnings.extend(_check_playwright())

    if env_flag("REQUIRE_DB_SSL") and not os.getenv("DB_SSLMODE", "").strip():
        warnings.append("REQUIRE_DB_SSL=1 set without DB_SSLMODE; defaulting to sslmode=require")

    report = DoctorReport(ok=not failures, failures=failures, warnings=warnings)
    _log_report(report)
    return report


def _log_report(report: DoctorReport) -> None:
    if report.ok:
        logger.info("Doctor OK")
    else:
        logger.error("Doctor FAIL")

    for item in report.failures:
        logger.error("DOCTOR_FAIL %s", item)
    for item in report.warnings:
        logger.warning("DOCTOR_WARN %s", item)
