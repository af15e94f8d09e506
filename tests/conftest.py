import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, update

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from crawler.reconciler import Reconciler  # noqa: E402
from crawler.retry import PERMANENT  # noqa: E402
from crawler.scheduler import Scheduler  # noqa: E402
from crawler.schema import crawl_targets, ensure_schema  # noqa: E402
from crawler.settings import CrawlSettings  # noqa: E402
from crawler.sources.base import SourceAdapter, total_failure  # noqa: E402
from crawler.store import TargetStore  # noqa: E402
from crawler.types import SOURCE_MAP_SEARCH, NormalizedRecord  # noqa: E402


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedAdapter(SourceAdapter):
    """Adapter returning queued FetchResults (or callables) per target id."""

    source_type = SOURCE_MAP_SEARCH

    def __init__(self, default=None):
        self.default = default
        self.scripts = {}
        self.calls = []

    def script(self, target_id, *results):
        self.scripts.setdefault(target_id, []).extend(results)

    def fetch(self, target, max_results, cancel):
        self.calls.append(target.id)
        queue = self.scripts.get(target.id)
        item = queue.pop(0) if queue else self.default
        if callable(item):
            item = item(target, cancel)
        if item is None:
            return total_failure(PERMANENT, "nothing scripted")
        return item


def make_record(name, lat=47.6, lng=-122.3, city="Seattle", **kwargs):
    return NormalizedRecord(
        source=SOURCE_MAP_SEARCH,
        name=name,
        city=city,
        latitude=lat,
        longitude=lng,
        **kwargs,
    )


def make_settings(**overrides):
    values = {
        "enabled": True,
        "batch_size": 3,
        "target_delay_seconds": 0.0,
        "idle_interval_seconds": 0.0,
        "disabled_poll_seconds": 0.0,
        "retry_base_seconds": 60.0,
        "retry_multiplier": 2.0,
        "retry_max_attempts": 3,
    }
    values.update(overrides)
    return CrawlSettings(**values)


def set_target(engine, target_id, **values):
    with engine.begin() as conn:
        conn.execute(update(crawl_targets).where(crawl_targets.c.id == target_id).values(**values))


@pytest.fixture()
def engine(tmp_path):
    eng = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'crawl.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def store(engine):
    return TargetStore(engine)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def adapter():
    return ScriptedAdapter()


@pytest.fixture()
def scheduler_factory(store, clock, adapter):
    def _build(**overrides):
        return Scheduler(
            store=store,
            reconciler=Reconciler(clock=clock),
            sources={SOURCE_MAP_SEARCH: adapter},
            settings=make_settings(**overrides),
            clock=clock,
        )

    return _build


@pytest.fixture()
def add_target(store):
    def _add(name, **kwargs):
        with store.session() as conn:
            return store.add_target(conn, name, **kwargs)

    return _add
