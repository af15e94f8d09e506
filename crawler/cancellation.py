from __future__ import annotations

import threading
from typing import List, Optional


class CrawlCancelled(Exception):
    """Raised at a suspension point once a stop has been requested."""


class CancelToken:
    """Cooperative cancellation handle passed down the crawl call chain.

    Cancelling a token cancels every child created from it.
    """

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._children: List[CancelToken] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "CancelToken") -> None:
        with self._lock:
            self._children.append(child)
            already = self._event.is_set()
        if already:
            child.cancel()

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            children = list(self._children)
        for c in children:
            c.cancel()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CrawlCancelled("crawl cancelled")

    def sleep(self, seconds: float) -> None:
        if self.wait(seconds):
            raise CrawlCancelled("crawl cancelled")
