"""Match incoming records to cafes, merge fields, and dedupe sub-records.

Merge rules, per field class:

- identifying (name, address, coordinates, external id ...) and gap-fill
  fields are written only while the stored value is empty;
- volatile fields (rating, review count, hours, attributes) are refreshed
  whenever the incoming value is non-empty;
- an empty incoming value never overwrites anything.

Each call to `Reconciler.upsert` is one transaction: a record is applied
completely or not at all.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.engine import Connection

from .entities import EntityStore
from .observability import log_event, utc_now
from .schema import board_games, cafes, clip, clip_values, photos, reviews
from .slugs import SlugAllocator
from .types import CatalogItemData, NormalizedRecord, UpsertResult

logger = logging.getLogger("cafe-crawler")

DEFAULT_COUNTRY = "United States"

IDENTIFYING_FIELDS = (
    "name",
    "address",
    "city",
    "state",
    "country",
    "postal_code",
    "latitude",
    "longitude",
    "external_id",
)
GAP_FILL_FIELDS = (
    "description",
    "phone",
    "email",
    "website",
    "bgg_username",
    "price_range",
    "maps_url",
    "local_image_path",
)
VOLATILE_FIELDS = ("average_rating", "total_reviews", "opening_hours", "attributes_json")

GAME_GAP_FIELDS = (
    "external_id",
    "description",
    "image_url",
    "min_players",
    "max_players",
    "playtime_minutes",
    "source_url",
)


class ReconcilerIntegrityError(RuntimeError):
    """The one-cafe-per-external-id invariant does not hold in storage."""


class RecordRejected(ValueError):
    """A single record cannot be applied; skip it and carry on."""


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _record_columns(record: NormalizedRecord) -> Dict[str, Any]:
    attributes = None
    if record.attributes:
        attributes = json.dumps(record.attributes, ensure_ascii=False, sort_keys=True)
    values = {
        "name": record.name,
        "address": record.address,
        "city": record.city,
        "state": record.state,
        "country": record.country,
        "postal_code": record.postal_code,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "external_id": record.external_id,
        "description": record.description,
        "phone": record.phone,
        "email": record.email,
        "website": record.website,
        "bgg_username": record.bgg_username,
        "price_range": record.price_range,
        "maps_url": record.maps_url,
        "local_image_path": record.local_image_path,
        "average_rating": record.rating,
        "total_reviews": record.review_count,
        "opening_hours": record.opening_hours,
        "attributes_json": attributes,
    }
    return clip_values(cafes, {k: _clean(v) for k, v in values.items()})


def merge_values(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Column values that should change on `existing`, per the field classes."""
    changes: Dict[str, Any] = {}
    for field in IDENTIFYING_FIELDS + GAP_FILL_FIELDS:
        new = incoming.get(field)
        if _is_empty(new):
            continue
        if _is_empty(existing.get(field)):
            changes[field] = new
    for field in VOLATILE_FIELDS:
        new = incoming.get(field)
        if _is_empty(new):
            continue
        if existing.get(field) != new:
            changes[field] = new
    return changes


class Reconciler:
    def __init__(
        self,
        entities: Optional[EntityStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.entities = entities or EntityStore()
        self.clock = clock

    def slug_allocator(self, conn: Connection) -> SlugAllocator:
        """Allocator scoped to one target execution on `conn`."""
        return SlugAllocator(lambda slug: self.entities.slug_exists(conn, slug))

    # ---- matching ------------------------------------------------------

    def _match(
        self, conn: Connection, record: NormalizedRecord, incoming: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if record.entity_id is not None:
            bound = self.entities.by_id(conn, record.entity_id)
            if bound is None:
                raise RecordRejected(f"bound cafe {record.entity_id} does not exist")
            return bound

        external_id = incoming["external_id"]
        if not _is_empty(external_id):
            rows = self.entities.by_external_id(conn, external_id)
            if len(rows) > 1:
                raise ReconcilerIntegrityError(
                    f"{len(rows)} cafes share external_id {external_id!r}: "
                    f"ids={[r['id'] for r in rows]}"
                )
            if rows:
                return rows[0]

        name, city = incoming["name"], incoming["city"]
        if _is_empty(name) or _is_empty(city):
            return None
        rows = self.entities.by_name_in_city(conn, name, city)
        if len(rows) > 1:
            logger.warning(
                "Name match for %r in %r is ambiguous (%s rows); using oldest id=%s",
                name,
                city,
                len(rows),
                rows[0]["id"],
            )
        return rows[0] if rows else None

    # ---- upsert --------------------------------------------------------

    def upsert(self, conn: Connection, record: NormalizedRecord, slugs: SlugAllocator) -> UpsertResult:
        with conn.begin():
            now = self.clock()
            incoming = _record_columns(record)
            existing = self._match(conn, record, incoming)

            if existing is not None:
                changes = merge_values(existing, incoming)
                changed_fields = sorted(changes)
                changes["last_verified_at"] = now
                changes["updated_at"] = now
                self.entities.update_cafe(conn, existing["id"], changes)
                cafe_id = existing["id"]
                was_created = False
            else:
                cafe_id = self._create(conn, incoming, slugs, now)
                changed_fields = []
                was_created = True

            reviews_added = self._merge_reviews(conn, cafe_id, record, now)
            photos_added = self._merge_photos(conn, cafe_id, record, now)
            items_linked = self._merge_catalog(conn, cafe_id, record.catalog_items, now)

        result = UpsertResult(
            entity_id=cafe_id,
            was_created=was_created,
            changed_fields=changed_fields,
            reviews_added=reviews_added,
            photos_added=photos_added,
            items_linked=items_linked,
        )
        log_event(
            "UPSERT",
            source=record.source,
            cafe_id=cafe_id,
            created=was_created,
            changed=changed_fields,
            reviews_added=reviews_added,
            photos_added=photos_added,
            items_linked=items_linked,
        )
        return result

    def _create(
        self,
        conn: Connection,
        incoming: Dict[str, Any],
        slugs: SlugAllocator,
        now: datetime,
    ) -> int:
        missing = [f for f in ("name", "city", "latitude", "longitude") if _is_empty(incoming.get(f))]
        if missing:
            raise RecordRejected(f"cannot create cafe without {', '.join(missing)}")

        values = {k: v for k, v in incoming.items() if not _is_empty(v)}
        values.setdefault("address", "")
        values.setdefault("country", DEFAULT_COUNTRY)
        values.setdefault("total_reviews", 0)
        values.update(
            slug=slugs.allocate(incoming["name"]),
            is_active=True,
            is_verified=False,
            last_verified_at=now,
            created_at=now,
            updated_at=now,
        )
        return self.entities.insert_cafe(conn, values)

    # ---- sub-records ---------------------------------------------------

    def _merge_reviews(self, conn: Connection, cafe_id: int, record: NormalizedRecord, now: datetime) -> int:
        if not record.reviews:
            return 0
        seen = self.entities.review_contents(conn, cafe_id)
        added = 0
        for review in record.reviews:
            content = clip(reviews.c.content, (review.content or "").strip())
            if not content or content in seen:
                continue
            self.entities.insert_review(
                conn,
                {
                    "cafe_id": cafe_id,
                    "author": clip(reviews.c.author, review.author),
                    "rating": review.rating,
                    "content": content,
                    "visit_date": review.visit_date,
                    "created_at": now,
                },
            )
            seen.add(content)
            added += 1
        return added

    def _merge_photos(self, conn: Connection, cafe_id: int, record: NormalizedRecord, now: datetime) -> int:
        if not record.photos:
            return 0
        seen = self.entities.photo_paths(conn, cafe_id)
        order = self.entities.photo_count(conn, cafe_id)
        added = 0
        for photo in record.photos:
            path = clip(photos.c.local_path, (photo.local_path or "").strip())
            if not path or path in seen or _is_empty(photo.url):
                continue
            self.entities.insert_photo(
                conn,
                {
                    "cafe_id": cafe_id,
                    "url": clip(photos.c.url, photo.url),
                    "local_path": path,
                    "caption": clip(photos.c.caption, photo.caption),
                    "display_order": order,
                    "uploaded_at": now,
                },
            )
            seen.add(path)
            order += 1
            added += 1
        return added

    def _resolve_game(self, conn: Connection, item: CatalogItemData, now: datetime) -> int:
        name = clip(board_games.c.name, item.name.strip())
        incoming = clip_values(
            board_games,
            {
                "external_id": _clean(item.external_id),
                "description": _clean(item.description),
                "image_url": _clean(item.image_url),
                "min_players": item.min_players,
                "max_players": item.max_players,
                "playtime_minutes": item.playtime_minutes,
                "source_url": _clean(item.source_url),
            },
        )

        game = None
        if not _is_empty(incoming["external_id"]):
            game = self.entities.game_by_external_id(conn, incoming["external_id"])
        if game is None:
            game = self.entities.game_by_name(conn, name)

        if game is None:
            values = {k: v for k, v in incoming.items() if not _is_empty(v)}
            values.update(name=name, created_at=now)
            return self.entities.insert_game(conn, values)

        fills = {
            k: v
            for k, v in incoming.items()
            if k in GAME_GAP_FIELDS and not _is_empty(v) and _is_empty(game.get(k))
        }
        self.entities.update_game(conn, game["id"], fills)
        return game["id"]

    def _merge_catalog(
        self,
        conn: Connection,
        cafe_id: int,
        items: Sequence[CatalogItemData],
        now: datetime,
    ) -> int:
        linked: set[int] = set()
        for item in items:
            if _is_empty(item.name):
                continue
            game_id = self._resolve_game(conn, item, now)
            if game_id in linked:
                continue
            link = self.entities.get_link(conn, cafe_id, game_id)
            if link is None:
                self.entities.insert_link(
                    conn,
                    {
                        "cafe_id": cafe_id,
                        "game_id": game_id,
                        "is_available": True,
                        "price": item.price,
                        "last_verified": now,
                        "created_at": now,
                    },
                )
            else:
                self.entities.refresh_link(conn, link["id"], now, item.price)
            linked.add(game_id)
        return len(linked)

    # ---- removal -------------------------------------------------------

    def unlink_catalog_items(self, conn: Connection, cafe_id: int, game_ids: Sequence[int]) -> Dict[str, Any]:
        """Remove cafe/game links, then purge games no cafe references any more."""
        game_ids = sorted(set(int(g) for g in game_ids))
        orphans: List[int] = []
        with conn.begin():
            linked = [g for g in game_ids if self.entities.get_link(conn, cafe_id, g) is not None]
            unlinked = self.entities.delete_links(conn, cafe_id, linked)
            for game_id in linked:
                if self.entities.link_count(conn, game_id) == 0:
                    self.entities.delete_game(conn, game_id)
                    orphans.append(game_id)
        if orphans:
            logger.info("Purged %s orphaned games: %s", len(orphans), orphans)
        return {"cafe_id": cafe_id, "unlinked": unlinked, "orphans_deleted": orphans}
