from __future__ import annotations

from typing import Dict

from ..settings import CrawlSettings
from ..types import SOURCE_COLLECTION_API, SOURCE_MAP_SEARCH, SOURCE_WEBSITE_TEXT
from .base import SourceAdapter
from .collection_api import BggXmlClient, CollectionApiSource
from .map_search import MapSearchSource, PlaywrightMapSearchClient
from .website_text import PlaywrightPageTextClient, WebsiteTextSource


def build_sources(settings: CrawlSettings) -> Dict[str, SourceAdapter]:
    """One adapter per source type, wired once at startup."""
    api_policy = settings.api_retry_policy()
    bgg = BggXmlClient(
        base_url=settings.bgg_api_base_url,
        token=settings.bgg_api_token,
        timeout=settings.http_timeout_seconds,
    )
    return {
        SOURCE_MAP_SEARCH: MapSearchSource(
            client=PlaywrightMapSearchClient(),
            queries=settings.map_search_queries,
            policy=api_policy,
            query_delay_seconds=settings.map_query_delay_seconds,
        ),
        SOURCE_COLLECTION_API: CollectionApiSource(client=bgg, policy=api_policy),
        SOURCE_WEBSITE_TEXT: WebsiteTextSource(
            client=PlaywrightPageTextClient(),
            policy=api_policy,
            resolver=bgg.exact_match,
        ),
    }


__all__ = ["SourceAdapter", "build_sources"]
