"""Table definitions for targets, crawl history, cafes and their sub-records."""
from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    inspect,
    text as sql_text,
)
from sqlalchemy.engine import Engine

from .db import crawl_schema

metadata = MetaData()

crawl_targets = Table(
    "crawl_targets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("country", String(100)),
    Column("region", String(20), nullable=False, default="US"),
    Column("source_type", String(30), nullable=False, default="map_search"),
    Column("query", String(500)),
    Column("entity_id", Integer, ForeignKey("cafes.id", ondelete="SET NULL")),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("crawl_count", Integer, nullable=False, default=0),
    Column("last_crawled_at", DateTime(timezone=True)),
    Column("last_crawl_status", String(20)),
    Column("next_crawl_at", DateTime(timezone=True)),
    Column("consecutive_failures", Integer, nullable=False, default=0),
    Column("max_results", Integer, nullable=False, default=15),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

crawl_history = Table(
    "crawl_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("target_id", Integer, ForeignKey("crawl_targets.id", ondelete="CASCADE"), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("status", String(20), nullable=False),
    Column("found", Integer, nullable=False, default=0),
    Column("added", Integer, nullable=False, default=0),
    Column("updated", Integer, nullable=False, default=0),
    Column("skipped", Integer, nullable=False, default=0),
    Column("error_message", String(2000)),
)

cafes = Table(
    "cafes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("slug", String(300), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("description", String(2000)),
    Column("address", String(500), nullable=False, default=""),
    Column("city", String(100), nullable=False),
    Column("state", String(100)),
    Column("country", String(100), nullable=False),
    Column("postal_code", String(20)),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("phone", String(50)),
    Column("email", String(100)),
    Column("website", String(500)),
    Column("opening_hours", Text),
    Column("attributes_json", Text),
    Column("bgg_username", String(100)),
    Column("price_range", String(10)),
    Column("external_id", String(250), unique=True),
    Column("maps_url", String(1000)),
    Column("local_image_path", String(500)),
    Column("average_rating", Float),
    Column("total_reviews", Integer, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("last_verified_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cafe_id", Integer, ForeignKey("cafes.id", ondelete="CASCADE"), nullable=False),
    Column("author", String(200)),
    Column("rating", Float),
    Column("content", String(5000), nullable=False),
    Column("visit_date", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

photos = Table(
    "photos",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cafe_id", Integer, ForeignKey("cafes.id", ondelete="CASCADE"), nullable=False),
    Column("url", String(1000), nullable=False),
    Column("local_path", String(500)),
    Column("caption", String(500)),
    Column("display_order", Integer, nullable=False, default=0),
    Column("uploaded_at", DateTime(timezone=True), nullable=False),
)

board_games = Table(
    "board_games",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_id", String(100), unique=True),
    Column("name", String(200), nullable=False),
    Column("description", String(4000)),
    Column("image_url", String(500)),
    Column("min_players", Integer),
    Column("max_players", Integer),
    Column("playtime_minutes", Integer),
    Column("source_url", String(1000)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

# No ON DELETE on game_id: orphaned games are purged by the reconciler, not the database.
cafe_games = Table(
    "cafe_games",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cafe_id", Integer, ForeignKey("cafes.id", ondelete="CASCADE"), nullable=False),
    Column("game_id", Integer, ForeignKey("board_games.id"), nullable=False),
    Column("is_available", Boolean, nullable=False, default=True),
    Column("price", Float),
    Column("last_verified", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("cafe_id", "game_id", name="uq_cafe_games_cafe_game"),
)

REQUIRED_TABLES = [t.name for t in metadata.sorted_tables]


def clip(column: Column, value: Any) -> Any:
    """Cut a string to the column's declared length; other values pass through."""
    length = getattr(column.type, "length", None)
    if isinstance(value, str) and length and len(value) > length:
        return value[:length]
    return value


def clip_values(table: Table, values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: clip(table.c[k], v) if k in table.c else v for k, v in values.items()}


def ensure_schema(engine: Engine) -> None:
    if engine.dialect.name.startswith("postgres"):
        with engine.begin() as conn:
            conn.execute(sql_text(f"CREATE SCHEMA IF NOT EXISTS {crawl_schema()}"))
    metadata.create_all(engine)


def missing_tables(engine: Engine) -> list[str]:
    schema = crawl_schema() if engine.dialect.name.startswith("postgres") else None
    existing = set(inspect(engine).get_table_names(schema=schema))
    return [name for name in REQUIRED_TABLES if name not in existing]
