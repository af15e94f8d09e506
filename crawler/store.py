"""Crawl targets and their append-only crawl history."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import case, func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from .observability import as_utc, truncate_error, utc_now
from .schema import crawl_history, crawl_targets
from .types import (
    HISTORY_FAILED,
    HISTORY_IN_PROGRESS,
    HISTORY_SUCCESS,
    SOURCE_MAP_SEARCH,
    SOURCE_TYPES,
    STATUS_FAILED,
    STATUS_SUCCESS,
    CrawlTarget,
)

logger = logging.getLogger("cafe-crawler")


def _row_to_target(row: Any) -> CrawlTarget:
    return CrawlTarget(
        id=row.id,
        name=row.name,
        source_type=row.source_type,
        country=row.country,
        region=row.region,
        query=row.query,
        entity_id=row.entity_id,
        is_active=bool(row.is_active),
        crawl_count=row.crawl_count,
        last_crawled_at=as_utc(row.last_crawled_at),
        last_crawl_status=row.last_crawl_status,
        next_crawl_at=as_utc(row.next_crawl_at),
        consecutive_failures=row.consecutive_failures,
        max_results=row.max_results,
    )


def _history_to_dict(row: Any) -> Dict[str, Any]:
    data = dict(row._mapping)
    data["started_at"] = as_utc(data["started_at"])
    data["completed_at"] = as_utc(data["completed_at"])
    return data


class TargetStore:
    def __init__(self, engine: Engine, history_error_chars: int = 2000) -> None:
        self.engine = engine
        self.history_error_chars = history_error_chars

    @contextmanager
    def session(self) -> Iterator[Connection]:
        """One connection per target execution; always released."""
        conn = self.engine.connect()
        try:
            yield conn
        finally:
            conn.close()

    # ---- targets -------------------------------------------------------

    def add_target(
        self,
        conn: Connection,
        name: str,
        *,
        country: Optional[str] = None,
        region: str = "US",
        source_type: str = SOURCE_MAP_SEARCH,
        query: Optional[str] = None,
        entity_id: Optional[int] = None,
        max_results: int = 15,
        is_active: bool = True,
    ) -> int:
        if source_type not in SOURCE_TYPES:
            raise ValueError(f"unknown source_type: {source_type}")
        if not name or not name.strip():
            raise ValueError("target name is required")
        with conn.begin():
            result = conn.execute(
                insert(crawl_targets).values(
                    name=name.strip(),
                    country=country,
                    region=region,
                    source_type=source_type,
                    query=query,
                    entity_id=entity_id,
                    is_active=is_active,
                    crawl_count=0,
                    consecutive_failures=0,
                    max_results=max_results,
                    created_at=utc_now(),
                )
            )
            return int(result.inserted_primary_key[0])

    def get_target(self, conn: Connection, target_id: int) -> Optional[CrawlTarget]:
        with conn.begin():
            row = conn.execute(
                select(crawl_targets).where(crawl_targets.c.id == target_id)
            ).first()
        return _row_to_target(row) if row is not None else None

    def list_targets(self, conn: Connection, active_only: bool = False) -> List[CrawlTarget]:
        stmt = select(crawl_targets).order_by(crawl_targets.c.id)
        if active_only:
            stmt = stmt.where(crawl_targets.c.is_active.is_(True))
        with conn.begin():
            rows = conn.execute(stmt).all()
        return [_row_to_target(r) for r in rows]

    def count_targets(self, conn: Connection) -> int:
        with conn.begin():
            return int(conn.execute(select(func.count()).select_from(crawl_targets)).scalar_one())

    def retry_due_targets(self, conn: Connection, now: datetime, limit: int) -> List[CrawlTarget]:
        c = crawl_targets.c
        stmt = (
            select(crawl_targets)
            .where(c.is_active.is_(True))
            .where(c.next_crawl_at.is_not(None))
            .where(c.next_crawl_at <= now)
            .order_by(c.next_crawl_at, c.id)
            .limit(limit)
        )
        with conn.begin():
            rows = conn.execute(stmt).all()
        return [_row_to_target(r) for r in rows]

    def next_targets(self, conn: Connection, now: datetime, limit: int) -> List[CrawlTarget]:
        """Least-crawled first; never-crawled before oldest-crawled.

        Failed targets without a pending retry wait for an operator and are skipped.
        """
        c = crawl_targets.c
        never_crawled_first = case((c.last_crawled_at.is_(None), 0), else_=1)
        stmt = (
            select(crawl_targets)
            .where(c.is_active.is_(True))
            .where(c.next_crawl_at.is_(None))
            .where((c.last_crawl_status.is_(None)) | (c.last_crawl_status != STATUS_FAILED))
            .order_by(c.crawl_count, never_crawled_first, c.last_crawled_at, c.id)
            .limit(limit)
        )
        with conn.begin():
            rows = conn.execute(stmt).all()
        return [_row_to_target(r) for r in rows]

    def select_batch(self, conn: Connection, now: datetime, limit: int) -> tuple[List[CrawlTarget], bool]:
        """Returns (targets, is_retry_batch)."""
        due = self.retry_due_targets(conn, now, limit)
        if due:
            return due, True
        return self.next_targets(conn, now, limit), False

    def queue_preview(self, conn: Connection, now: datetime, count: int) -> List[CrawlTarget]:
        due = self.retry_due_targets(conn, now, count)
        if len(due) >= count:
            return due
        rest = self.next_targets(conn, now, count - len(due))
        return due + rest

    def mark_success(self, conn: Connection, target_id: int, now: datetime) -> None:
        c = crawl_targets.c
        with conn.begin():
            conn.execute(
                update(crawl_targets)
                .where(c.id == target_id)
                .values(
                    crawl_count=c.crawl_count + 1,
                    last_crawled_at=now,
                    last_crawl_status=STATUS_SUCCESS,
                    next_crawl_at=None,
                    consecutive_failures=0,
                )
            )

    def mark_failed(
        self,
        conn: Connection,
        target_id: int,
        *,
        next_crawl_at: Optional[datetime],
        consecutive_failures: int,
    ) -> None:
        """next_crawl_at=None leaves the target waiting for an operator."""
        with conn.begin():
            conn.execute(
                update(crawl_targets)
                .where(crawl_targets.c.id == target_id)
                .values(
                    last_crawl_status=STATUS_FAILED,
                    next_crawl_at=next_crawl_at,
                    consecutive_failures=consecutive_failures,
                )
            )

    def reset_target(self, conn: Connection, target_id: int) -> bool:
        with conn.begin():
            result = conn.execute(
                update(crawl_targets)
                .where(crawl_targets.c.id == target_id)
                .values(last_crawl_status=None, next_crawl_at=None, consecutive_failures=0)
            )
        return result.rowcount > 0

    def set_active(self, conn: Connection, target_id: int, active: bool) -> bool:
        with conn.begin():
            result = conn.execute(
                update(crawl_targets)
                .where(crawl_targets.c.id == target_id)
                .values(is_active=active)
            )
        return result.rowcount > 0

    # ---- history -------------------------------------------------------

    def open_history(self, conn: Connection, target_id: int, started_at: datetime) -> int:
        with conn.begin():
            result = conn.execute(
                insert(crawl_history).values(
                    target_id=target_id,
                    started_at=started_at,
                    status=HISTORY_IN_PROGRESS,
                    found=0,
                    added=0,
                    updated=0,
                    skipped=0,
                )
            )
            return int(result.inserted_primary_key[0])

    def close_history(
        self,
        conn: Connection,
        history_id: int,
        *,
        success: bool,
        found: int = 0,
        added: int = 0,
        updated: int = 0,
        skipped: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        with conn.begin():
            conn.execute(
                update(crawl_history)
                .where(crawl_history.c.id == history_id)
                .where(crawl_history.c.status == HISTORY_IN_PROGRESS)
                .values(
                    completed_at=utc_now(),
                    status=HISTORY_SUCCESS if success else HISTORY_FAILED,
                    found=found,
                    added=added,
                    updated=updated,
                    skipped=skipped,
                    error_message=truncate_error(error_message, self.history_error_chars),
                )
            )

    def recent_history(self, conn: Connection, target_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        stmt = (
            select(crawl_history)
            .where(crawl_history.c.target_id == target_id)
            .order_by(crawl_history.c.started_at.desc(), crawl_history.c.id.desc())
            .limit(limit)
        )
        with conn.begin():
            rows = conn.execute(stmt).all()
        return [_history_to_dict(r) for r in rows]
