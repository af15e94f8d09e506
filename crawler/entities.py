"""Row-level access to cafes, their reviews/photos, and the shared game catalog.

Nothing here opens a transaction; the reconciler wraps each record merge.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection

from .schema import board_games, cafe_games, cafes, photos, reviews


class EntityStore:
    # ---- cafes ---------------------------------------------------------

    def by_external_id(self, conn: Connection, external_id: str) -> List[Dict[str, Any]]:
        rows = conn.execute(
            select(cafes).where(cafes.c.external_id == external_id).order_by(cafes.c.id)
        ).all()
        return [dict(r._mapping) for r in rows]

    def by_name_in_city(self, conn: Connection, name: str, city: str) -> List[Dict[str, Any]]:
        rows = conn.execute(
            select(cafes)
            .where(func.lower(cafes.c.name) == name.strip().lower())
            .where(func.lower(cafes.c.city) == city.strip().lower())
            .order_by(cafes.c.created_at, cafes.c.id)
        ).all()
        return [dict(r._mapping) for r in rows]

    def by_id(self, conn: Connection, cafe_id: int) -> Optional[Dict[str, Any]]:
        row = conn.execute(select(cafes).where(cafes.c.id == cafe_id)).first()
        return dict(row._mapping) if row is not None else None

    def slug_exists(self, conn: Connection, slug: str) -> bool:
        return conn.execute(select(cafes.c.id).where(cafes.c.slug == slug)).first() is not None

    def insert_cafe(self, conn: Connection, values: Dict[str, Any]) -> int:
        result = conn.execute(insert(cafes).values(**values))
        return int(result.inserted_primary_key[0])

    def update_cafe(self, conn: Connection, cafe_id: int, values: Dict[str, Any]) -> None:
        if values:
            conn.execute(update(cafes).where(cafes.c.id == cafe_id).values(**values))

    # ---- reviews / photos ---------------------------------------------

    def review_contents(self, conn: Connection, cafe_id: int) -> set[str]:
        return set(
            conn.execute(select(reviews.c.content).where(reviews.c.cafe_id == cafe_id)).scalars()
        )

    def insert_review(self, conn: Connection, values: Dict[str, Any]) -> None:
        conn.execute(insert(reviews).values(**values))

    def photo_paths(self, conn: Connection, cafe_id: int) -> set[str]:
        rows = conn.execute(
            select(photos.c.local_path)
            .where(photos.c.cafe_id == cafe_id)
            .where(photos.c.local_path.is_not(None))
        ).scalars()
        return set(rows)

    def photo_count(self, conn: Connection, cafe_id: int) -> int:
        return int(
            conn.execute(
                select(func.count()).select_from(photos).where(photos.c.cafe_id == cafe_id)
            ).scalar_one()
        )

    def insert_photo(self, conn: Connection, values: Dict[str, Any]) -> None:
        conn.execute(insert(photos).values(**values))

    # ---- catalog -------------------------------------------------------

    def game_by_external_id(self, conn: Connection, external_id: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            select(board_games).where(board_games.c.external_id == external_id)
        ).first()
        return dict(row._mapping) if row is not None else None

    def game_by_name(self, conn: Connection, name: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            select(board_games).where(board_games.c.name == name).order_by(board_games.c.id)
        ).first()
        return dict(row._mapping) if row is not None else None

    def insert_game(self, conn: Connection, values: Dict[str, Any]) -> int:
        result = conn.execute(insert(board_games).values(**values))
        return int(result.inserted_primary_key[0])

    def update_game(self, conn: Connection, game_id: int, values: Dict[str, Any]) -> None:
        if values:
            conn.execute(update(board_games).where(board_games.c.id == game_id).values(**values))

    def delete_game(self, conn: Connection, game_id: int) -> None:
        conn.execute(delete(board_games).where(board_games.c.id == game_id))

    # ---- cafe <-> game links ------------------------------------------

    def get_link(self, conn: Connection, cafe_id: int, game_id: int) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            select(cafe_games)
            .where(cafe_games.c.cafe_id == cafe_id)
            .where(cafe_games.c.game_id == game_id)
        ).first()
        return dict(row._mapping) if row is not None else None

    def insert_link(self, conn: Connection, values: Dict[str, Any]) -> None:
        conn.execute(insert(cafe_games).values(**values))

    def refresh_link(
        self,
        conn: Connection,
        link_id: int,
        verified_at: datetime,
        price: Optional[float] = None,
    ) -> None:
        values: Dict[str, Any] = {"is_available": True, "last_verified": verified_at}
        if price is not None:
            values["price"] = price
        conn.execute(update(cafe_games).where(cafe_games.c.id == link_id).values(**values))

    def delete_links(self, conn: Connection, cafe_id: int, game_ids: Sequence[int]) -> int:
        if not game_ids:
            return 0
        result = conn.execute(
            delete(cafe_games)
            .where(cafe_games.c.cafe_id == cafe_id)
            .where(cafe_games.c.game_id.in_(list(game_ids)))
        )
        return result.rowcount

    def link_count(self, conn: Connection, game_id: int) -> int:
        return int(
            conn.execute(
                select(func.count()).select_from(cafe_games).where(cafe_games.c.game_id == game_id)
            ).scalar_one()
        )

