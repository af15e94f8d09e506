"""Background crawl loop: select targets, fetch, reconcile, record outcome.

Targets in a batch run strictly one after another. The first failed target
ends the batch; every target commits its own work independently.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import DataError, IntegrityError

from .cancellation import CancelToken, CrawlCancelled
from .observability import StepTimer, log_event, utc_now
from .reconciler import Reconciler, ReconcilerIntegrityError, RecordRejected
from .retry import PERMANENT, TRANSIENT, RetryAfter, classify_exception
from .settings import CrawlSettings
from .sources.base import SourceAdapter, total_failure
from .store import TargetStore
from .types import (
    STATE_BACKOFF,
    STATE_CRAWLING,
    STATE_IDLE,
    STATE_SELECTING,
    BatchOutcome,
    CrawlTarget,
    FetchResult,
    TargetOutcome,
)

logger = logging.getLogger("cafe-crawler")


class Scheduler:
    def __init__(
        self,
        store: TargetStore,
        reconciler: Reconciler,
        sources: Dict[str, SourceAdapter],
        settings: CrawlSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.sources = sources
        self.settings = settings
        self.policy = settings.target_retry_policy()
        self.clock = clock

        self.state = STATE_IDLE
        self.last_batch: Optional[BatchOutcome] = None
        self._root = CancelToken()
        self._active: set[CancelToken] = set()
        self._active_guard = threading.Lock()
        self._batch_lock = threading.Lock()
        self._target_locks: Dict[int, threading.Lock] = {}
        self._target_locks_guard = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    # ---- state ---------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._batch_lock.locked()

    @property
    def loop_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "state": self.state,
            "loop_alive": self.loop_alive,
            "last_batch": self.last_batch.to_dict() if self.last_batch else None,
            "settings": self.settings.summary(),
        }

    def _lock_for(self, target_id: int) -> threading.Lock:
        with self._target_locks_guard:
            lock = self._target_locks.get(target_id)
            if lock is None:
                lock = threading.Lock()
                self._target_locks[target_id] = lock
            return lock

    def _token(self) -> CancelToken:
        token = self._root.child()
        with self._active_guard:
            self._active.add(token)
        return token

    def _release(self, token: CancelToken) -> None:
        with self._active_guard:
            self._active.discard(token)

    # ---- queue ---------------------------------------------------------

    def queue_preview(self, count: int) -> List[CrawlTarget]:
        with self.store.session() as conn:
            return self.store.queue_preview(conn, self.clock(), count)

    # ---- one target ----------------------------------------------------

    def _fetch(self, adapter: Optional[SourceAdapter], target: CrawlTarget, cancel: CancelToken) -> FetchResult:
        if adapter is None:
            return total_failure(PERMANENT, f"no adapter configured for source type {target.source_type!r}")
        max_results = target.max_results or self.settings.max_results_default
        try:
            return adapter.fetch(target, max_results, cancel)
        except CrawlCancelled:
            raise
        except Exception as exc:
            logger.exception("Adapter %s raised for target %s", target.source_type, target.id)
            return total_failure(classify_exception(exc), f"{type(exc).__name__}: {exc}")

    def _reconcile(self, conn: Connection, target: CrawlTarget, fetch: FetchResult, cancel: CancelToken) -> TargetOutcome:
        slugs = self.reconciler.slug_allocator(conn)
        out = TargetOutcome(
            target_id=target.id,
            target_name=target.name,
            success=True,
            found=len(fetch.records),
            skipped=fetch.outcome.skipped,
        )
        for record in fetch.records:
            cancel.raise_if_cancelled()
            try:
                result = self.reconciler.upsert(conn, record, slugs)
            except RecordRejected as exc:
                out.skipped += 1
                log_event("RECORD_SKIP", target_id=target.id, name=record.name, reason=str(exc))
                continue
            except ReconcilerIntegrityError:
                raise
            except (IntegrityError, DataError) as exc:
                out.skipped += 1
                logger.warning("Record %r for target %s rolled back: %s", record.name, target.id, exc)
                continue
            if result.was_created:
                out.added += 1
            else:
                out.updated += 1
        return out

    def _execute(self, target_id: int, cancel: CancelToken) -> TargetOutcome:
        """The only path that crawls a target; batch and manual runs both use it."""
        with self._lock_for(target_id):
            cancel.raise_if_cancelled()
            with self.store.session() as conn:
                target = self.store.get_target(conn, target_id)
                if target is None:
                    return TargetOutcome(
                        target_id=target_id,
                        target_name="",
                        success=False,
                        error_class=PERMANENT,
                        message=f"target {target_id} not found",
                    )
                return self._execute_target(conn, target, cancel)

    def _execute_target(self, conn: Connection, target: CrawlTarget, cancel: CancelToken) -> TargetOutcome:
        history_id = self.store.open_history(conn, target.id, self.clock())
        log_event("TARGET_START", target_id=target.id, name=target.name, source=target.source_type)
        timer = StepTimer()
        try:
            fetch = self._fetch(self.sources.get(target.source_type), target, cancel)
            if not fetch.outcome.ok:
                return self._record_failure(conn, target, history_id, fetch, self.clock(), timer)
            outcome = self._reconcile(conn, target, fetch, cancel)
            return self._record_success(conn, target, history_id, fetch, outcome, timer)
        except CrawlCancelled:
            self.store.close_history(conn, history_id, success=False, error_message="cancelled")
            log_event("TARGET_END", target_id=target.id, status="cancelled", elapsed_ms=timer.elapsed_ms())
            raise
        except ReconcilerIntegrityError as exc:
            logger.critical("Integrity violation while crawling target %s", target.id, exc_info=True)
            self.store.close_history(conn, history_id, success=False, error_message=f"integrity error: {exc}")
            self.store.mark_failed(
                conn,
                target.id,
                next_crawl_at=None,
                consecutive_failures=target.consecutive_failures + 1,
            )
            raise
        except Exception as exc:
            logger.exception("Crawl of target %s (%s) failed unexpectedly", target.id, target.name)
            failed = total_failure(classify_exception(exc), f"{type(exc).__name__}: {exc}")
            return self._record_failure(conn, target, history_id, failed, self.clock(), timer)

    def _record_success(
        self,
        conn: Connection,
        target: CrawlTarget,
        history_id: int,
        fetch: FetchResult,
        outcome: TargetOutcome,
        timer: StepTimer,
    ) -> TargetOutcome:
        self.store.mark_success(conn, target.id, self.clock())
        self.store.close_history(
            conn,
            history_id,
            success=True,
            found=outcome.found,
            added=outcome.added,
            updated=outcome.updated,
            skipped=outcome.skipped,
            error_message=fetch.outcome.message,
        )
        outcome.message = f"found {outcome.found}, added {outcome.added}, updated {outcome.updated}"
        if fetch.outcome.message:
            outcome.message += f" (partial: {fetch.outcome.message})"
        log_event(
            "TARGET_END",
            target_id=target.id,
            status="success",
            found=outcome.found,
            added=outcome.added,
            updated=outcome.updated,
            skipped=outcome.skipped,
            elapsed_ms=timer.elapsed_ms(),
        )
        return outcome

    def _record_failure(
        self,
        conn: Connection,
        target: CrawlTarget,
        history_id: int,
        fetch: FetchResult,
        now: datetime,
        timer: StepTimer,
    ) -> TargetOutcome:
        error_class = fetch.outcome.error_class or TRANSIENT
        message = fetch.outcome.message or "source returned no data"
        failures = target.consecutive_failures + 1
        decision = self.policy.decide(failures, error_class)
        exhausted = False

        if isinstance(decision, RetryAfter):
            next_at: Optional[datetime] = now + timedelta(seconds=decision.delay_seconds)
            logger.warning("Target %s (%s) failed, retry at %s: %s", target.id, target.name, next_at, message)
        elif error_class == TRANSIENT:
            exhausted = True
            next_at = now + timedelta(seconds=self.policy.ceiling_delay())
            logger.warning(
                "Target %s (%s) exhausted retries after %s failures; next attempt %s",
                target.id,
                target.name,
                failures,
                next_at,
            )
        else:
            next_at = None
            logger.error("Target %s (%s) failed permanently, needs operator: %s", target.id, target.name, message)

        self.store.mark_failed(conn, target.id, next_crawl_at=next_at, consecutive_failures=failures)
        self.store.close_history(conn, history_id, success=False, skipped=fetch.outcome.skipped, error_message=message)
        log_event(
            "TARGET_END",
            target_id=target.id,
            status="failed",
            error_class=error_class,
            next_crawl_at=next_at,
            elapsed_ms=timer.elapsed_ms(),
        )
        return TargetOutcome(
            target_id=target.id,
            target_name=target.name,
            success=False,
            skipped=fetch.outcome.skipped,
            error_class=error_class,
            next_crawl_at=next_at,
            exhausted=exhausted,
            message=message,
        )

    def crawl_target(self, target_id: int) -> TargetOutcome:
        """Out-of-band crawl of one target; same state transitions as a batch."""
        token = self._token()
        try:
            return self._execute(target_id, token)
        except CrawlCancelled:
            return TargetOutcome(target_id=target_id, target_name="", success=False, message="cancelled")
        finally:
            self._release(token)

    def trigger_target(self, target_id: int) -> TargetOutcome:
        try:
            return self.crawl_target(target_id)
        except ReconcilerIntegrityError as exc:
            return TargetOutcome(
                target_id=target_id,
                target_name="",
                success=False,
                error_class="integrity",
                message=f"aborted: {exc}",
            )
        except Exception as exc:
            logger.exception("Manual crawl of target %s failed", target_id)
            return TargetOutcome(
                target_id=target_id,
                target_name="",
                success=False,
                error_class=classify_exception(exc),
                message=f"failed: {type(exc).__name__}: {exc}",
            )

    # ---- batch ---------------------------------------------------------

    def run_batch(self) -> BatchOutcome:
        """One pass over the selected targets. Integrity errors propagate."""
        if not self._batch_lock.acquire(blocking=False):
            return BatchOutcome(stopped_early=True, message="a batch is already running")
        token = self._token()
        batch = BatchOutcome()
        try:
            self.state = STATE_SELECTING
            with self.store.session() as conn:
                targets, batch.retry_batch = self.store.select_batch(
                    conn, self.clock(), self.settings.batch_size
                )
            log_event(
                "BATCH_START",
                targets=[t.id for t in targets],
                retry_batch=batch.retry_batch,
            )
            if not targets:
                batch.message = "no targets due"
                return batch

            for index, target in enumerate(targets):
                if index > 0 and token.wait(self.settings.target_delay_seconds):
                    batch.cancelled = True
                    break
                if token.cancelled:
                    batch.cancelled = True
                    break
                self.state = STATE_CRAWLING
                try:
                    outcome = self._execute(target.id, token)
                except CrawlCancelled:
                    batch.cancelled = True
                    break
                batch.targets.append(outcome)
                if not outcome.success:
                    self.state = STATE_BACKOFF
                    batch.stopped_early = True
                    break

            exhausted = [t.target_name for t in batch.targets if t.exhausted]
            if exhausted:
                logger.warning("Batch finished with exhausted retries for: %s", ", ".join(exhausted))
            batch.message = self._summarize(batch)
            return batch
        finally:
            self.last_batch = batch
            log_event(
                "BATCH_END",
                processed=len(batch.targets),
                stopped_early=batch.stopped_early,
                cancelled=batch.cancelled,
            )
            self.state = STATE_IDLE
            self._release(token)
            self._batch_lock.release()

    def trigger_batch(self) -> BatchOutcome:
        try:
            return self.run_batch()
        except ReconcilerIntegrityError as exc:
            return BatchOutcome(stopped_early=True, message=f"batch aborted: {exc}")
        except Exception as exc:
            logger.exception("Manual batch failed")
            return BatchOutcome(stopped_early=True, message=f"batch failed: {type(exc).__name__}: {exc}")

    @staticmethod
    def _summarize(batch: BatchOutcome) -> str:
        done = sum(1 for t in batch.targets if t.success)
        text = f"{done} target(s) crawled"
        if batch.stopped_early and batch.targets:
            failed = batch.targets[-1]
            text += f"; stopped after failure on {failed.target_name}: {failed.message}"
        if batch.cancelled:
            text += "; cancelled"
        return text

    # ---- loop ----------------------------------------------------------

    def _loop(self) -> None:
        logger.info("Crawl loop started")
        while not self._root.cancelled:
            if not self.settings.enabled:
                self._root.wait(self.settings.disabled_poll_seconds)
                continue
            try:
                self.run_batch()
            except ReconcilerIntegrityError:
                logger.critical("Crawl batch aborted by integrity error", exc_info=True)
            except Exception:
                logger.exception("Crawl batch failed")
            self._root.wait(self.settings.idle_interval_seconds)
        logger.info("Crawl loop stopped")

    def start(self) -> None:
        if self.loop_alive:
            return
        self._thread = threading.Thread(target=self._loop, name="crawl-loop", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Cancel in-flight work; the loop carries on with its next cycle."""
        with self._active_guard:
            tokens = list(self._active)
        for token in tokens:
            token.cancel()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        self._root.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
