import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from .reconciler import Reconciler

logger = logging.getLogger("cafe-crawler")


def create_app(scheduler=None):
    """Admin API over one Scheduler; with no argument it is wired from env."""
    if scheduler is None:
        from .run import build_scheduler

        scheduler = build_scheduler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler.settings.enabled:
            scheduler.start()
            logger.info("Background crawl loop started by admin API")
        try:
            yield
        finally:
            scheduler.stop()
            scheduler.shutdown()

    app = FastAPI(title="Cafe Crawler Admin API", version="1.0", lifespan=lifespan)
    app.state.scheduler = scheduler
    store = scheduler.store

    def _require_target(target_id: int):
        with store.session() as conn:
            target = store.get_target(conn, target_id)
        if target is None:
            raise HTTPException(status_code=404, detail=f"Unknown crawl target {target_id}")
        return target

    @app.get("/health")
    def health():
        return {"ok": True, "version": "1.0"}

    @app.get("/crawl/status")
    def crawl_status():
        return {"ok": True, **scheduler.status()}

    @app.get("/crawl/queue")
    def crawl_queue(count: int = 10):
        if count < 1:
            raise HTTPException(status_code=400, detail="count must be positive")
        targets = scheduler.queue_preview(count)
        return {"ok": True, "targets": [t.to_dict() for t in targets]}

    @app.post("/crawl/targets/{target_id}")
    def crawl_target(target_id: int):
        _require_target(target_id)
        outcome = scheduler.trigger_target(target_id)
        return {"ok": outcome.success, "outcome": outcome.to_dict()}

    @app.post("/crawl/batch")
    def crawl_batch():
        outcome = scheduler.trigger_batch()
        return {"ok": outcome.success, "outcome": outcome.to_dict()}

    @app.post("/crawl/stop")
    def crawl_stop():
        was_running = scheduler.is_running
        scheduler.stop()
        return {"ok": True, "was_running": was_running}

    @app.post("/crawl/targets/{target_id}/reset")
    def reset_target(target_id: int):
        with store.session() as conn:
            found = store.reset_target(conn, target_id)
        if not found:
            raise HTTPException(status_code=404, detail=f"Unknown crawl target {target_id}")
        return {"ok": True, "target_id": target_id}

    @app.get("/crawl/targets/{target_id}/history")
    def target_history(target_id: int, limit: int = 20):
        _require_target(target_id)
        with store.session() as conn:
            rows = store.recent_history(conn, target_id, limit=limit)
        return {"ok": True, "history": rows}

    @app.delete("/cafes/{cafe_id}/games/{game_id}")
    def unlink_game(cafe_id: int, game_id: int):
        with store.session() as conn:
            result = Reconciler().unlink_catalog_items(conn, cafe_id, [game_id])
        if not result["unlinked"]:
            raise HTTPException(status_code=404, detail=f"Game {game_id} is not linked to cafe {cafe_id}")
        return {"ok": True, "result": result}

    return app
