from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

import requests

from ..cancellation import CancelToken
from ..observability import StepTimer, log_event
from ..retry import PERMANENT, RetryPolicy, classify_status
from ..types import SOURCE_COLLECTION_API, CatalogItemData, CrawlTarget, FetchResult, NormalizedRecord
from .base import CallResult, SourceAdapter, call_with_retry, partial, success, to_float, to_int, total_failure

logger = logging.getLogger("cafe-crawler")

BGG_GAME_URL = "https://boardgamegeek.com/boardgame/{id}"


def _child_text(el: ET.Element, tag: str) -> Optional[str]:
    child = el.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def parse_collection(xml_text: str) -> tuple[List[Dict[str, Any]], int]:
    """Items of a collection response, plus the count of unusable items."""
    root = ET.fromstring(xml_text)
    items: List[Dict[str, Any]] = []
    skipped = 0
    for item in root.iter("item"):
        object_id = to_int(item.get("objectid"))
        name = _child_text(item, "name")
        if object_id is None or not name:
            skipped += 1
            continue
        stats = item.find("stats")
        rating = None
        if stats is not None:
            average = stats.find("rating/average")
            rating = to_float(average.get("value")) if average is not None else None
        items.append(
            {
                "id": object_id,
                "name": name,
                "thumbnail": _child_text(item, "thumbnail"),
                "image": _child_text(item, "image"),
                "year_published": to_int(_child_text(item, "yearpublished")),
                "min_players": to_int(stats.get("minplayers")) if stats is not None else None,
                "max_players": to_int(stats.get("maxplayers")) if stats is not None else None,
                "playing_time": to_int(stats.get("playingtime")) if stats is not None else None,
                "rating": rating,
            }
        )
    return items, skipped


def parse_search(xml_text: str) -> List[Dict[str, Any]]:
    root = ET.fromstring(xml_text)
    out: List[Dict[str, Any]] = []
    for item in root.iter("item"):
        object_id = to_int(item.get("id"))
        name_el = item.find("name")
        if object_id is None or name_el is None:
            continue
        out.append({"id": object_id, "name": name_el.get("value") or ""})
    return out


class BggXmlClient:
    """BoardGameGeek XML API v2 over a shared requests session."""

    def __init__(
        self,
        base_url: str = "https://boardgamegeek.com/xmlapi2",
        token: str = "",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/xml"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _get(self, path: str, params: Dict[str, Any]) -> CallResult:
        resp = self.session.get(f"{self.base_url}/{path}", params=params, timeout=self.timeout)
        if resp.status_code == 202:
            return CallResult(
                error_class=classify_status(202),
                message=f"{path} request queued (HTTP 202)",
            )
        if resp.status_code != 200:
            return CallResult(
                error_class=classify_status(resp.status_code),
                message=f"{path} returned HTTP {resp.status_code}",
            )
        return CallResult(value=resp.text)

    def collection(self, username: str) -> CallResult:
        result = self._get("collection", {"username": username, "own": 1, "stats": 1})
        if not result.ok:
            return result
        try:
            return CallResult(value=parse_collection(result.value))
        except ET.ParseError as exc:
            return CallResult(error_class=PERMANENT, message=f"unparseable collection XML: {exc}")

    def search(self, query: str) -> CallResult:
        result = self._get("search", {"query": query, "type": "boardgame"})
        if not result.ok:
            return result
        try:
            return CallResult(value=parse_search(result.value))
        except ET.ParseError as exc:
            return CallResult(error_class=PERMANENT, message=f"unparseable search XML: {exc}")

    def exact_match(self, name: str) -> Optional[Dict[str, Any]]:
        """First search hit whose name equals `name` (case-insensitive)."""
        try:
            result = self.search(name)
        except requests.RequestException as exc:
            logger.debug("BGG search for %r failed: %s", name, exc)
            return None
        if not result.ok:
            return None
        wanted = name.strip().lower()
        for hit in result.value:
            if hit["name"].strip().lower() == wanted:
                return hit
        return None


def item_to_catalog(item: Dict[str, Any]) -> CatalogItemData:
    return CatalogItemData(
        name=item["name"],
        external_id=f"bgg:{item['id']}",
        image_url=item.get("thumbnail") or item.get("image"),
        min_players=item.get("min_players"),
        max_players=item.get("max_players"),
        playtime_minutes=item.get("playing_time"),
        source_url=BGG_GAME_URL.format(id=item["id"]),
    )


class CollectionApiSource(SourceAdapter):
    """A cafe's owned-games collection; the target's query is the owner username."""

    source_type = SOURCE_COLLECTION_API

    def __init__(self, client: BggXmlClient, policy: RetryPolicy) -> None:
        self.client = client
        self.policy = policy

    def fetch(self, target: CrawlTarget, max_results: int, cancel: CancelToken) -> FetchResult:
        username = (target.query or "").strip()
        if target.entity_id is None or not username:
            return total_failure(PERMANENT, f"target {target.id} needs a bound cafe and a collection username")

        timer = StepTimer()
        result = call_with_retry(
            lambda: self.client.collection(username),
            self.policy,
            cancel,
            source=self.source_type,
            label=f"collection {username!r}",
        )
        log_event(
            "FETCH",
            source=self.source_type,
            target_id=target.id,
            username=username,
            ok=result.ok,
            latency_ms=timer.elapsed_ms(),
        )
        if not result.ok:
            return total_failure(result.error_class, result.message)

        items, skipped = result.value
        catalog = [item_to_catalog(i) for i in items[:max_results]]
        record = NormalizedRecord(
            source=self.source_type,
            entity_id=target.entity_id,
            bgg_username=username,
            catalog_items=catalog,
        )
        if skipped and not items:
            return partial([record], PERMANENT, f"{skipped} collection items unusable", skipped=skipped)
        return success([record], skipped=skipped)
