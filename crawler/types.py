from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Target crawl status (crawl_targets.last_crawl_status)
STATUS_SUCCESS = "Success"
STATUS_FAILED = "Failed"

# History row status (crawl_history.status)
HISTORY_IN_PROGRESS = "InProgress"
HISTORY_SUCCESS = "Success"
HISTORY_FAILED = "Failed"

# Source types, one adapter each
SOURCE_MAP_SEARCH = "map_search"
SOURCE_COLLECTION_API = "collection_api"
SOURCE_WEBSITE_TEXT = "website_text"
SOURCE_TYPES = (SOURCE_MAP_SEARCH, SOURCE_COLLECTION_API, SOURCE_WEBSITE_TEXT)

# Adapter outcome kinds
OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial_failure"
OUTCOME_TOTAL = "total_failure"

# Scheduler states
STATE_IDLE = "idle"
STATE_SELECTING = "selecting"
STATE_CRAWLING = "crawling"
STATE_BACKOFF = "backoff"


@dataclass
class CrawlTarget:
    id: int
    name: str
    source_type: str = SOURCE_MAP_SEARCH
    country: Optional[str] = None
    region: str = "US"
    query: Optional[str] = None
    entity_id: Optional[int] = None
    is_active: bool = True
    crawl_count: int = 0
    last_crawled_at: Optional[datetime] = None
    last_crawl_status: Optional[str] = None
    next_crawl_at: Optional[datetime] = None
    consecutive_failures: int = 0
    max_results: int = 15

    @property
    def location(self) -> str:
        """Search location string, e.g. "Hanoi, Vietnam"."""
        base = self.query or self.name
        if self.country:
            return f"{base}, {self.country}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "source_type": self.source_type,
            "country": self.country,
            "region": self.region,
            "query": self.query,
            "entity_id": self.entity_id,
            "is_active": self.is_active,
            "crawl_count": self.crawl_count,
            "last_crawled_at": self.last_crawled_at,
            "last_crawl_status": self.last_crawl_status,
            "next_crawl_at": self.next_crawl_at,
            "consecutive_failures": self.consecutive_failures,
            "max_results": self.max_results,
        }


@dataclass
class ReviewData:
    content: str
    author: Optional[str] = None
    rating: Optional[float] = None
    visit_date: Optional[datetime] = None


@dataclass
class PhotoData:
    url: str
    local_path: Optional[str] = None
    caption: Optional[str] = None


@dataclass
class CatalogItemData:
    name: str
    external_id: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None
    playtime_minutes: Optional[int] = None
    price: Optional[float] = None
    source_url: Optional[str] = None


@dataclass
class NormalizedRecord:
    """Source-agnostic shape every adapter emits; consumed by the Reconciler."""

    source: str
    name: Optional[str] = None
    external_id: Optional[str] = None
    entity_id: Optional[int] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_range: Optional[str] = None
    opening_hours: Optional[str] = None
    attributes: Dict[str, List[str]] = field(default_factory=dict)
    bgg_username: Optional[str] = None
    maps_url: Optional[str] = None
    local_image_path: Optional[str] = None
    reviews: List[ReviewData] = field(default_factory=list)
    photos: List[PhotoData] = field(default_factory=list)
    catalog_items: List[CatalogItemData] = field(default_factory=list)


@dataclass
class FetchOutcome:
    kind: str = OUTCOME_SUCCESS
    error_class: Optional[str] = None
    message: Optional[str] = None
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.kind != OUTCOME_TOTAL


@dataclass
class FetchResult:
    records: List[NormalizedRecord]
    outcome: FetchOutcome


@dataclass
class UpsertResult:
    entity_id: int
    was_created: bool
    changed_fields: List[str] = field(default_factory=list)
    reviews_added: int = 0
    photos_added: int = 0
    items_linked: int = 0


@dataclass
class TargetOutcome:
    target_id: int
    target_name: str
    success: bool
    found: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    error_class: Optional[str] = None
    next_crawl_at: Optional[datetime] = None
    exhausted: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "target_name": self.target_name,
            "success": self.success,
            "found": self.found,
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "error_class": self.error_class,
            "next_crawl_at": self.next_crawl_at,
            "exhausted": self.exhausted,
            "message": self.message,
        }


@dataclass
class BatchOutcome:
    targets: List[TargetOutcome] = field(default_factory=list)
    retry_batch: bool = False
    stopped_early: bool = False
    cancelled: bool = False
    message: str = ""

    @property
    def success(self) -> bool:
        return not self.stopped_early and all(t.success for t in self.targets)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "retry_batch": self.retry_batch,
            "stopped_early": self.stopped_early,
            "cancelled": self.cancelled,
            "message": self.message,
            "found": sum(t.found for t in self.targets),
            "added": sum(t.added for t in self.targets),
            "updated": sum(t.updated for t in self.targets),
            "targets": [t.to_dict() for t in self.targets],
        }
