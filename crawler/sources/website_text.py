from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol
from urllib.parse import urljoin

from ..cancellation import CancelToken
from ..observability import StepTimer, log_event
from ..retry import PERMANENT, RetryPolicy
from ..types import SOURCE_WEBSITE_TEXT, CatalogItemData, CrawlTarget, FetchResult, NormalizedRecord
from .base import CallResult, SourceAdapter, call_with_retry, success, to_float, total_failure
from .name_filter import is_plausible_item_name

logger = logging.getLogger("cafe-crawler")

GAME_PAGE_KEYWORDS = (
    "games",
    "collection",
    "library",
    "board games",
    "menu",
    "list",
    "shop",
    "shopping",
    "store",
    "buy",
)

# name -> {"id": ..., "name": ...} or None
Resolver = Callable[[str], Optional[Dict[str, Any]]]


@dataclass
class TextCandidate:
    name: str
    link: Optional[str] = None
    image: Optional[str] = None
    price: Optional[str] = None


class PageTextClient(Protocol):
    def candidates(self, url: str) -> List[TextCandidate]:
        ...


class WebsiteTextSource(SourceAdapter):
    """Games listed on a cafe's own website; the target's query is the URL."""

    source_type = SOURCE_WEBSITE_TEXT

    def __init__(
        self,
        client: PageTextClient,
        policy: RetryPolicy,
        resolver: Optional[Resolver] = None,
    ) -> None:
        self.client = client
        self.policy = policy
        self.resolver = resolver

    def fetch(self, target: CrawlTarget, max_results: int, cancel: CancelToken) -> FetchResult:
        url = (target.query or "").strip()
        if target.entity_id is None or not url.startswith(("http://", "https://")):
            return total_failure(PERMANENT, f"target {target.id} needs a bound cafe and an http(s) website URL")

        timer = StepTimer()
        result = call_with_retry(
            lambda: CallResult(value=self.client.candidates(url)),
            self.policy,
            cancel,
            source=self.source_type,
            label=f"page text {url}",
        )
        log_event(
            "FETCH",
            source=self.source_type,
            target_id=target.id,
            url=url,
            ok=result.ok,
            latency_ms=timer.elapsed_ms(),
        )
        if not result.ok:
            return total_failure(result.error_class, result.message)

        items: List[CatalogItemData] = []
        seen: set[str] = set()
        skipped = 0
        for candidate in result.value:
            if len(items) >= max_results:
                break
            name = (candidate.name or "").strip()
            if not is_plausible_item_name(name):
                skipped += 1
                continue
            key = name.lower()
            if key in seen:
                continue
            seen.add(key)

            external_id = None
            if self.resolver is not None:
                cancel.raise_if_cancelled()
                match = self.resolver(name)
                if match is None:
                    logger.debug("%r not found in catalog; dropped", name)
                    skipped += 1
                    continue
                external_id = f"bgg:{match['id']}"

            items.append(
                CatalogItemData(
                    name=name,
                    external_id=external_id,
                    image_url=candidate.image,
                    price=to_float(candidate.price),
                    source_url=candidate.link,
                )
            )

        record = NormalizedRecord(
            source=self.source_type,
            entity_id=target.entity_id,
            website=url,
            catalog_items=items,
        )
        return success([record], skipped=skipped)


class PlaywrightPageTextClient:
    """Finds a games/library page on a site and returns its visible titles."""

    candidate_selectors = (
        ".product-title",
        ".product-name",
        ".product_title",
        "h2.woocommerce-loop-product__title",
        ".grid-product__title",
        "li",
        "h3",
        "h4",
    )

    def __init__(self, headless: bool = True, timeout_ms: int = 60000) -> None:
        self.headless = headless
        self.timeout_ms = timeout_ms

    def candidates(self, url: str) -> List[TextCandidate]:
        from playwright.sync_api import sync_playwright

        with sync_playwright() as p:
            browser = p.chromium.launch(headless=self.headless)
            try:
                page = browser.new_page()
                page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                games_url = self._find_games_page(page, url)
                if games_url and games_url != url:
                    logger.info("Found potential game list page: %s", games_url)
                    page.goto(games_url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                return self._collect(page)
            finally:
                browser.close()

    def _find_games_page(self, page: Any, base_url: str) -> Optional[str]:
        links = page.locator("a")
        for i in range(links.count()):
            link = links.nth(i)
            href = link.get_attribute("href") or ""
            text = (link.inner_text() or "").lower()
            if not href or not text:
                continue
            if any(k in text or k in href.lower() for k in GAME_PAGE_KEYWORDS):
                return urljoin(base_url, href)
        return None

    def _collect(self, page: Any) -> List[TextCandidate]:
        out: List[TextCandidate] = []
        for selector in self.candidate_selectors:
            nodes = page.locator(selector)
            for i in range(nodes.count()):
                text = (nodes.nth(i).inner_text() or "").strip()
                if text:
                    out.append(TextCandidate(name=text.splitlines()[0]))
            if out:
                break
        return out
