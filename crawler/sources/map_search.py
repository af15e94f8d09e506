from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote, unquote_plus

from ..cancellation import CancelToken
from ..observability import StepTimer, log_event
from ..retry import PERMANENT, TRANSIENT, RetryPolicy
from ..types import (
    SOURCE_MAP_SEARCH,
    CrawlTarget,
    FetchResult,
    NormalizedRecord,
    PhotoData,
    ReviewData,
)
from .address import (
    clean_text,
    coords_from_url,
    parse_address_components,
    parse_relative_date,
    place_id_from_url,
)
from .base import CallResult, SourceAdapter, call_with_retry, partial, success, to_float, to_int, total_failure

logger = logging.getLogger("cafe-crawler")

MAPS_SEARCH_URL = "https://www.google.com/maps/search/{query}"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class SearchResponse:
    """Places returned for one search phrase.

    `direct_hit` is set when the search resolved straight to a single place.
    """

    places: List[Dict[str, Any]] = field(default_factory=list)
    direct_hit: bool = False


class MapSearchClient(Protocol):
    def search(self, location: str, query: str, max_results: int) -> SearchResponse:
        ...


def place_to_record(place: Dict[str, Any]) -> NormalizedRecord:
    """Normalize one place payload; raises ValueError when it is unusable."""
    name = clean_text(place.get("name"))
    if not name:
        raise ValueError("place without a name")

    maps_url = place.get("maps_url")
    lat = to_float(place.get("latitude"))
    lng = to_float(place.get("longitude"))
    if lat is None or lng is None:
        lat, lng = coords_from_url(maps_url)
    place_id = place.get("place_id") or place_id_from_url(maps_url)
    parts = parse_address_components(place.get("address"))

    reviews = []
    for raw in place.get("reviews") or []:
        content = clean_text(raw.get("content") or raw.get("text"))
        if not content:
            continue
        reviews.append(
            ReviewData(
                content=content,
                author=clean_text(raw.get("author")) or None,
                rating=to_float(raw.get("rating")),
                visit_date=parse_relative_date(raw.get("date_text")),
            )
        )

    photos = []
    urls = list(place.get("photo_urls") or [])
    paths = list(place.get("photo_local_paths") or [])
    if len(urls) == len(paths):
        photos = [PhotoData(url=u, local_path=p) for u, p in zip(urls, paths) if u and p]

    phone = place.get("phone")
    if phone:
        phone = re.sub(r"\s+", " ", re.sub(r"[^\d+\-\s()]", "", phone)).strip() or None

    return NormalizedRecord(
        source=SOURCE_MAP_SEARCH,
        name=name,
        external_id=f"maps:{place_id}" if place_id else None,
        address=parts.address or None,
        city=parts.city,
        state=parts.state,
        country=parts.country,
        postal_code=parts.postal_code,
        latitude=lat,
        longitude=lng,
        phone=phone,
        website=place.get("website"),
        description=place.get("description"),
        rating=to_float(place.get("rating")),
        review_count=to_int(place.get("review_count")),
        price_range=place.get("price_level"),
        opening_hours=place.get("opening_hours"),
        attributes=dict(place.get("attributes") or {}),
        bgg_username=place.get("bgg_username"),
        maps_url=maps_url,
        local_image_path=place.get("local_image_path"),
        reviews=reviews,
        photos=photos,
    )


class MapSearchSource(SourceAdapter):
    """Fan-out over several search phrases for one location.

    Results are merged by external id, then by case-insensitive name.
    """

    source_type = SOURCE_MAP_SEARCH

    def __init__(
        self,
        client: MapSearchClient,
        queries: Sequence[str],
        policy: RetryPolicy,
        query_delay_seconds: float = 2.0,
    ) -> None:
        self.client = client
        self.queries = list(queries) or ["board game cafe"]
        self.policy = policy
        self.query_delay_seconds = query_delay_seconds

    def fetch(self, target: CrawlTarget, max_results: int, cancel: CancelToken) -> FetchResult:
        location = target.location.strip(", ")
        if not location:
            return total_failure(PERMANENT, f"target {target.id} has no searchable location")

        records: List[NormalizedRecord] = []
        seen_ids: set[str] = set()
        seen_names: set[str] = set()
        skipped = 0
        failures: List[CallResult] = []
        succeeded = 0

        for index, query in enumerate(self.queries):
            if index > 0:
                cancel.sleep(self.query_delay_seconds)
            timer = StepTimer()
            result = call_with_retry(
                lambda q=query: CallResult(value=self.client.search(location, q, max_results)),
                self.policy,
                cancel,
                source=self.source_type,
                label=f"search {query!r} in {location!r}",
            )
            if not result.ok:
                failures.append(result)
                log_event("FETCH", source=self.source_type, target_id=target.id, query=query, ok=False, latency_ms=timer.elapsed_ms())
                continue
            succeeded += 1

            response: SearchResponse = result.value
            places = response.places[:1] if response.direct_hit else response.places
            if response.direct_hit:
                logger.info("Search %r in %s resolved to a single place", query, location)
            log_event(
                "FETCH",
                source=self.source_type,
                target_id=target.id,
                query=query,
                ok=True,
                places=len(places),
                direct_hit=response.direct_hit,
                latency_ms=timer.elapsed_ms(),
            )

            for place in places:
                try:
                    record = place_to_record(place)
                except (ValueError, TypeError, AttributeError) as exc:
                    skipped += 1
                    log_event("RECORD_SKIP", source=self.source_type, target_id=target.id, reason=str(exc))
                    continue
                name_key = record.name.lower()
                if record.external_id and record.external_id in seen_ids:
                    continue
                if name_key in seen_names:
                    continue
                if record.external_id:
                    seen_ids.add(record.external_id)
                seen_names.add(name_key)
                records.append(record)

        records = records[:max_results]
        if succeeded == 0:
            error_class = TRANSIENT if any(f.error_class == TRANSIENT for f in failures) else PERMANENT
            message = "; ".join(f.message or "" for f in failures) or "no queries configured"
            return total_failure(error_class, message, skipped=skipped)
        if failures:
            message = "; ".join(f.message or "" for f in failures)
            return partial(records, failures[0].error_class, message, skipped=skipped)
        return success(records, skipped=skipped)


class PlaywrightMapSearchClient:
    """Headless-browser transport for map searches."""

    feed_selector = "div[role='feed']"
    item_selector = "div[role='feed'] > div > div[jsaction]"
    title_selector = "h1.DUwDvf"

    def __init__(self, headless: bool = True, timeout_ms: int = 45000) -> None:
        self.headless = headless
        self.timeout_ms = timeout_ms

    def search(self, location: str, query: str, max_results: int) -> SearchResponse:
        from playwright.sync_api import sync_playwright

        url = MAPS_SEARCH_URL.format(query=quote(f"{query} {location}"))
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=self.headless)
            try:
                context = browser.new_context(
                    user_agent=USER_AGENT,
                    viewport={"width": 1920, "height": 1080},
                    locale="en-US",
                )
                context.set_default_timeout(30000)
                page = context.new_page()
                page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                page.wait_for_timeout(3000)

                title = page.locator(self.title_selector).first
                if title.count() > 0 and title.is_visible() and page.locator(self.feed_selector).count() == 0:
                    place = self._extract(page)
                    return SearchResponse(places=[place] if place else [], direct_hit=True)

                places: List[Dict[str, Any]] = []
                for i in range(max_results):
                    item = page.locator(self.item_selector).nth(i)
                    tries = 0
                    while item.count() == 0 and tries < 3:
                        page.locator(self.feed_selector).evaluate("el => el.scrollTop = el.scrollHeight")
                        page.wait_for_timeout(1500)
                        tries += 1
                    if item.count() == 0:
                        break
                    try:
                        item.scroll_into_view_if_needed()
                        item.click(timeout=10000)
                        page.wait_for_timeout(1500)
                        place = self._extract(page)
                        if place:
                            places.append(place)
                    except Exception as exc:
                        logger.debug("Map item %s for %r not extracted: %s", i, query, exc)
                    self._back_to_results(page)
                return SearchResponse(places=places)
            finally:
                browser.close()

    def _back_to_results(self, page: Any) -> None:
        back = page.locator("button[aria-label='Back']").first
        if back.count() > 0 and back.is_visible():
            back.click(timeout=5000)
        else:
            page.go_back(timeout=10000)
        page.wait_for_timeout(1000)

    def _text(self, page: Any, selector: str) -> Optional[str]:
        loc = page.locator(selector).first
        if loc.count() == 0:
            return None
        return loc.inner_text()

    def _extract(self, page: Any) -> Optional[Dict[str, Any]]:
        if page.locator("span:has-text('Permanently closed')").count() > 0:
            logger.info("Skipping permanently closed place")
            return None

        name = None
        m = re.search(r"/place/([^/]+)/@", page.url)
        if m:
            name = unquote_plus(m.group(1))
        else:
            name = self._text(page, self.title_selector)

        rating_label = page.locator("div[role='img'][aria-label*='star']").first
        rating = None
        if rating_label.count() > 0:
            rm = re.search(r"([\d.,]+)", rating_label.get_attribute("aria-label") or "")
            rating = rm.group(1) if rm else None

        website = None
        site = page.locator("a[data-item-id='authority']").first
        if site.count() > 0:
            website = site.get_attribute("href")

        return {
            "name": name,
            "maps_url": page.url,
            "address": self._text(page, "button[data-item-id='address']"),
            "phone": self._text(page, "button[data-item-id^='phone']"),
            "website": website,
            "price_level": self._text(page, "span[aria-label*='Price']"),
            "rating": rating,
        }
