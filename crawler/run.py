import argparse
import json
import logging
import os
import signal
import threading

from .db import get_engine
from .doctor import run_doctor
from .logging_setup import setup_logging
from .reconciler import Reconciler
from .scheduler import Scheduler
from .schema import ensure_schema
from .seed_data import seed_targets
from .settings import CrawlSettings
from .sources import build_sources
from .store import TargetStore
from .types import SOURCE_MAP_SEARCH, SOURCE_TYPES

logger = logging.getLogger("cafe-crawler")


def build_scheduler(engine=None, settings=None, sources=None):
    """Wire a Scheduler from the environment; callers may override any part."""
    engine = engine or get_engine()
    settings = settings or CrawlSettings.from_env()
    store = TargetStore(engine, history_error_chars=settings.history_error_chars)
    return Scheduler(
        store=store,
        reconciler=Reconciler(),
        sources=sources if sources is not None else build_sources(settings),
        settings=settings,
    )


def _print(payload):
    print(json.dumps(payload, indent=2, default=str))


def cmd_init(engine):
    ensure_schema(engine)
    logger.info("Schema applied")


def cmd_seed(engine):
    ensure_schema(engine)
    added = seed_targets(engine)
    logger.info("Seeded %s crawl targets", added)
    return added


def cmd_doctor(engine):
    report = run_doctor(engine)
    _print(report.to_dict())
    return report


def cmd_crawl(scheduler):
    outcome = scheduler.trigger_batch()
    _print(outcome.to_dict())
    return outcome


def cmd_crawl_target(scheduler, target_id):
    outcome = scheduler.trigger_target(target_id)
    _print(outcome.to_dict())
    return outcome


def cmd_loop(scheduler):
    stop = threading.Event()

    def _handle(signum, frame):
        logger.info("Signal %s received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)

    scheduler.start()
    while not stop.is_set() and scheduler.loop_alive:
        stop.wait(1.0)
    scheduler.stop()
    scheduler.shutdown()


def cmd_queue(scheduler, count):
    targets = scheduler.queue_preview(count)
    _print([t.to_dict() for t in targets])
    return targets


def cmd_history(engine, target_id, limit):
    store = TargetStore(engine)
    with store.session() as conn:
        rows = store.recent_history(conn, target_id, limit=limit)
    _print(rows)
    return rows


def cmd_add_target(engine, args):
    ensure_schema(engine)
    store = TargetStore(engine)
    with store.session() as conn:
        target_id = store.add_target(
            conn,
            args.name,
            country=args.country,
            region=args.region,
            source_type=args.source_type,
            query=args.query,
            entity_id=args.entity_id,
            max_results=args.max_results,
        )
    logger.info("Added crawl target %s (%s)", target_id, args.name)
    return target_id


def cmd_unlink_games(engine, cafe_id, game_ids):
    reconciler = Reconciler()
    with engine.connect() as conn:
        result = reconciler.unlink_catalog_items(conn, cafe_id, game_ids)
    _print(result)
    return result


def parse_args(argv=None):
    ap = argparse.ArgumentParser(prog="cafe-crawler")
    ap.add_argument(
        "command",
        choices=[
            "init",
            "seed",
            "doctor",
            "crawl",
            "crawl-target",
            "loop",
            "queue",
            "history",
            "add-target",
            "unlink-games",
        ],
    )
    ap.add_argument("--target-id", type=int, default=None)
    ap.add_argument("--count", type=int, default=10)
    ap.add_argument("--limit", type=int, default=20)
    ap.add_argument("--name", type=str, default=None, help="Target name for add-target")
    ap.add_argument("--country", type=str, default=None)
    ap.add_argument("--region", type=str, default="US")
    ap.add_argument(
        "--source-type",
        type=str,
        choices=sorted(SOURCE_TYPES),
        default=SOURCE_MAP_SEARCH,
    )
    ap.add_argument(
        "--query",
        type=str,
        default=None,
        help="Search location, BGG username or website URL depending on source type",
    )
    ap.add_argument("--entity-id", type=int, default=None, help="Cafe id for enrichment targets")
    ap.add_argument(
        "--max-results",
        type=int,
        default=int(os.getenv("CRAWL_MAX_RESULTS", "15")),
    )
    ap.add_argument("--cafe-id", type=int, default=None)
    ap.add_argument(
        "--game-ids",
        type=str,
        default=None,
        help="Comma-separated game ids for unlink-games",
    )
    args = ap.parse_args(argv)

    if args.command in {"crawl-target", "history"} and args.target_id is None:
        ap.error(f"{args.command} requires --target-id")
    if args.command == "add-target" and not args.name:
        ap.error("add-target requires --name")
    if args.command == "unlink-games" and (args.cafe_id is None or not args.game_ids):
        ap.error("unlink-games requires --cafe-id and --game-ids")
    return args


def main(argv=None):
    setup_logging()
    args = parse_args(argv)
    engine = get_engine()

    if args.command == "init":
        cmd_init(engine)
    elif args.command == "seed":
        cmd_seed(engine)
    elif args.command == "doctor":
        report = cmd_doctor(engine)
        if not report.ok:
            raise SystemExit(1)
    elif args.command == "crawl":
        cmd_crawl(build_scheduler(engine))
    elif args.command == "crawl-target":
        cmd_crawl_target(build_scheduler(engine), args.target_id)
    elif args.command == "loop":
        cmd_loop(build_scheduler(engine))
    elif args.command == "queue":
        cmd_queue(build_scheduler(engine), args.count)
    elif args.command == "history":
        cmd_history(engine, args.target_id, args.limit)
    elif args.command == "add-target":
        cmd_add_target(engine, args)
    elif args.command == "unlink-games":
        game_ids = [int(g.strip()) for g in args.game_ids.split(",") if g.strip()]
        cmd_unlink_games(engine, args.cafe_id, game_ids)


if __name__ == "__main__":
    main()
