"""Crawl frontier: URL states, the visited set, the FIFO of pending work and the page store.

The four live together in one object so that a single task (the crawler's
writer) can own all of them.  Nothing here is safe to call from more than
one task at a time, and nothing here needs to be.
"""

import logging
from collections import Counter, deque
from enum import Enum
from typing import Deque, Dict, Optional, Set, Tuple

from contentmap.models.config import CrawlConfig
from contentmap.models.page import Page
from contentmap.services.errors import InvalidURLError
from contentmap.services.page_store import PageStore
from contentmap.services.urls import classify, normalize

logger = logging.getLogger(__name__)


class UrlState(str, Enum):
    DISCOVERED = "discovered"
    QUEUED = "queued"
    IN_FLIGHT = "in-flight"
    VISITED = "visited"
    EXCLUDED = "excluded"
    FAILED = "failed"


class Frontier:
    def __init__(self, base_url: str, config: CrawlConfig, store: PageStore):
        self.base_url = normalize(base_url)
        self.config = config
        self.store = store
        self.states: Dict[str, UrlState] = {}
        self.visited: Set[str] = set()
        self.exclusions: Counter = Counter()
        self.in_flight = 0
        self.succeeded = 0
        self.fetched = 0
        self.failed = 0
        self._stored_successes = 0
        self._queue: Deque[Tuple[str, int]] = deque()
        # Shallowest depth each queued URL was discovered at
        self._queued_depth: Dict[str, int] = {}
        self._too_deep: Set[str] = set()

    def __len__(self) -> int:
        return len(self._queued_depth)

    @property
    def successful_pages(self) -> int:
        """Successful pages in the store, including those from earlier runs."""
        return self._stored_successes + self.succeeded

    def _mark_redirects(self, page: Page) -> None:
        # Redirect targets were fetched as part of this page
        for hop in page.redirect_chain or []:
            if self.states.get(hop) in (UrlState.IN_FLIGHT, UrlState.VISITED, UrlState.FAILED):
                continue
            self.states[hop] = UrlState.VISITED
            self.visited.add(hop)
            self._queued_depth.pop(hop, None)
            self._too_deep.discard(hop)

    def restore(self) -> int:
        """Pre-seed the visited set from the store and queue links of stored pages.

        Links are queued one level below the depth their page was crawled at,
        so a resumed run honours ``max_depth`` exactly like an uninterrupted
        one.  Links whose target is already stored, by URL or by canonical
        URL, are skipped.

        Returns the number of pages already stored.
        """
        pages = self.store.all()
        for page in pages:
            self.visited.add(page.url)
            self.states[page.url] = UrlState.VISITED if page.is_success else UrlState.FAILED
        for page in pages:
            self._mark_redirects(page)
        self._stored_successes = sum(1 for p in pages if p.is_success)

        for page in pages:
            if not page.is_success or page.depth >= self.config.max_depth:
                continue
            for link in page.links:
                if not self.store.exists(link.href):
                    self.discover(link.href, page.depth + 1)
        if self.base_url not in self.visited:
            self.discover(self.base_url, 0)
        logger.info("Frontier: resumed with %d stored pages, %d URLs queued", len(pages), len(self))
        return len(pages)

    def discover(self, url: str, depth: int) -> bool:
        """Queue *url* at *depth* if it is new, in scope and within the depth budget.

        A URL already waiting in the queue is moved up when it turns up again
        at a smaller depth, and a URL first seen below ``max_depth`` is queued
        once a shallower link to it appears.
        """
        try:
            url = normalize(url)
        except InvalidURLError:
            return False

        state = self.states.get(url)
        if state is UrlState.QUEUED:
            queued = self._queued_depth.get(url)
            # None: popped and waiting on the robots check
            if queued is None or depth >= queued:
                return False
            self._queued_depth[url] = depth
            self._queue.append((url, depth))
            return True
        if state is not None and url not in self._too_deep:
            return False

        if depth > self.config.max_depth:
            if state is None:
                self.exclude(url, "depth")
                self._too_deep.add(url)
            return False
        if url in self._too_deep:
            self._too_deep.discard(url)
            self.exclusions["depth"] -= 1

        self.states[url] = UrlState.DISCOVERED
        verdict = classify(url, self.base_url, self.config)
        if not verdict.in_frontier:
            self.exclude(url, verdict.reason)
            return False

        self.states[url] = UrlState.QUEUED
        self._queued_depth[url] = depth
        self._queue.append((url, depth))
        return True

    def exclude(self, url: str, reason: str) -> None:
        self.states[url] = UrlState.EXCLUDED
        self.exclusions[reason] += 1
        logger.debug("Frontier: excluded %s (%s)", url, reason)

    def pop(self) -> Optional[Tuple[str, int]]:
        while self._queue:
            url, depth = self._queue.popleft()
            # Stale entries: superseded by a shallower one, or already fetched
            if url in self.visited or self._queued_depth.get(url) != depth:
                continue
            del self._queued_depth[url]
            return url, depth
        return None

    def start(self, url: str) -> None:
        self.states[url] = UrlState.IN_FLIGHT
        self.in_flight += 1

    def record(self, page: Page) -> None:
        """Persist a finished fetch, mark its URL done and queue its links one level deeper."""
        self.store.upsert(page)
        self.in_flight -= 1
        self.fetched += 1
        self.visited.add(page.url)

        if page.status == 0:
            self.states[page.url] = UrlState.FAILED
            self.failed += 1
            return

        self.states[page.url] = UrlState.VISITED
        self._mark_redirects(page)
        if not page.is_success:
            return
        self.succeeded += 1

        if page.depth < self.config.max_depth:
            for link in page.links:
                self.discover(link.href, page.depth + 1)
