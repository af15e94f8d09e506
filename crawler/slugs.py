from __future__ import annotations

import re
import uuid
from typing import Callable, Iterable, Optional, Set

MAX_SLUG_LENGTH = 100

_INVALID = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


def _random_slug() -> str:
    return uuid.uuid4().hex[:8]


def slugify(name: Optional[str]) -> str:
    if not name:
        return _random_slug()
    slug = name.lower()
    slug = _INVALID.sub("", slug)
    slug = _WHITESPACE.sub("-", slug)
    slug = _DASHES.sub("-", slug)
    slug = slug.strip("-")
    if not slug:
        return _random_slug()
    return slug[:MAX_SLUG_LENGTH].strip("-") or _random_slug()


class SlugAllocator:
    """Hands out unique slugs across the durable store and the current batch.

    `exists` answers for persisted rows; the working set covers entities
    allocated in this batch but not yet visible to `exists`.
    """

    def __init__(self, exists: Callable[[str], bool], reserved: Iterable[str] = ()) -> None:
        self._exists = exists
        self._working: Set[str] = set(reserved)

    def _taken(self, slug: str) -> bool:
        return slug in self._working or self._exists(slug)

    def allocate(self, name: Optional[str]) -> str:
        base = slugify(name)
        slug = base
        counter = 1
        while self._taken(slug):
            slug = f"{base}-{counter}"
            counter += 1
        self._working.add(slug)
        return slug

    @property
    def working_set(self) -> Set[str]:
        return set(self._working)
