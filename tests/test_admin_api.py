import pytest
from fastapi.testclient import TestClient

from conftest import make_record
from crawler.admin_api import create_app
from crawler.reconciler import Reconciler
from crawler.sources.base import success
from crawler.types import SOURCE_COLLECTION_API, CatalogItemData, NormalizedRecord


@pytest.fixture()
def scheduler(scheduler_factory):
    return scheduler_factory(enabled=False)


@pytest.fixture()
def client(scheduler):
    with TestClient(create_app(scheduler)) as c:
        yield c


def test_health(client):
    assert client.get("/health").json()["ok"] is True


def test_status_and_queue(client, add_target):
    first = add_target("Seattle, WA")
    status = client.get("/crawl/status").json()
    assert status["ok"] and status["running"] is False
    assert status["settings"]["enabled"] is False

    queue = client.get("/crawl/queue", params={"count": 5}).json()
    assert [t["id"] for t in queue["targets"]] == [first]
    assert client.get("/crawl/queue", params={"count": 0}).status_code == 400


def test_trigger_target(client, adapter, add_target):
    target_id = add_target("Seattle, WA")
    adapter.script(target_id, success([make_record("Meeple Hall")]))

    body = client.post(f"/crawl/targets/{target_id}").json()
    assert body["ok"] is True
    assert body["outcome"]["added"] == 1

    assert client.post("/crawl/targets/999").status_code == 404


def test_trigger_batch_and_history(client, adapter, add_target):
    target_id = add_target("Seattle, WA")
    adapter.default = success([])

    body = client.post("/crawl/batch").json()
    assert body["ok"] is True
    assert body["outcome"]["targets"][0]["target_id"] == target_id

    history = client.get(f"/crawl/targets/{target_id}/history", params={"limit": 5}).json()
    assert history["history"][0]["status"] == "Success"
    assert client.get("/crawl/targets/999/history").status_code == 404


def test_failed_trigger_reports_not_ok(client, add_target):
    target_id = add_target("Seattle, WA")
    body = client.post(f"/crawl/targets/{target_id}").json()
    assert body["ok"] is False
    assert body["outcome"]["error_class"] == "permanent"


def test_stop_and_reset(client, add_target):
    target_id = add_target("Seattle, WA")
    assert client.post("/crawl/stop").json() == {"ok": True, "was_running": False}
    assert client.post(f"/crawl/targets/{target_id}/reset").json()["ok"] is True
    assert client.post("/crawl/targets/999/reset").status_code == 404


def test_unlink_game(client, engine, clock):
    reconciler = Reconciler(clock=clock)
    with engine.connect() as conn:
        cafe_id = reconciler.upsert(conn, make_record("Meeple Hall"), reconciler.slug_allocator(conn)).entity_id
        reconciler.upsert(
            conn,
            NormalizedRecord(source=SOURCE_COLLECTION_API, entity_id=cafe_id, catalog_items=[CatalogItemData(name="Azul")]),
            reconciler.slug_allocator(conn),
        )

    body = client.delete(f"/cafes/{cafe_id}/games/1").json()
    assert body["ok"] is True
    assert body["result"]["orphans_deleted"] == [1]
    assert client.delete(f"/cafes/{cafe_id}/games/1").status_code == 404


def test_trigger_reports_unexpected_errors_as_outcomes(client, scheduler, adapter, add_target, monkeypatch):
    target_id = add_target("Seattle, WA")
    adapter.default = success([make_record("Meeple Hall")])

    def _boom(conn, record, slugs):
        raise RuntimeError("boom")

    monkeypatch.setattr(scheduler.reconciler, "upsert", _boom)

    resp = client.post(f"/crawl/targets/{target_id}")
    assert resp.status_code == 200
    assert resp.json()["ok"] is False
    assert resp.json()["outcome"]["message"] == "RuntimeError: boom"

    history = client.get(f"/crawl/targets/{target_id}/history").json()["history"]
    assert [row["status"] for row in history] == ["Failed"]
