"""Site crawler: a fixed pool of fetch workers feeding a single writer task.

Workers only fetch.  The writer (the coroutine running :meth:`Crawler.run`)
owns the :class:`~contentmap.services.frontier.Frontier` and therefore the
visited set and the page store; it dispatches work over one queue and reads
completions from another.
"""

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, NamedTuple, Optional
from urllib.parse import urlsplit

import httpx

from contentmap.config import settings
from contentmap.models.config import CrawlConfig
from contentmap.models.page import Page, PageSnapshot
from contentmap.services.browser_fetcher import Renderer
from contentmap.services.errors import ConfigError, FetchError
from contentmap.services.fetcher import fetch as fetch_page
from contentmap.services.frontier import Frontier
from contentmap.services.page_store import PageStore
from contentmap.services.robots import RobotsChecker, RobotsPolicy
from contentmap.services.urls import ALLOWED_SCHEMES, normalize, to_id

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[PageSnapshot]]

MAX_ATTEMPTS = 3
RETRY_BACKOFF = 1.0  # seconds, multiplied by the attempt number

# Synthetic status for pages that could not be fetched at all
FAILED_STATUS = 0


class CrawlStats(NamedTuple):
    base_url: str
    fetched: int
    succeeded: int
    failed: int
    excluded: int
    stored_pages: int
    successful_pages: int
    limit_reached: bool
    resumed: bool


class _Completion(NamedTuple):
    url: str
    depth: int
    snapshot: Optional[PageSnapshot]
    error: Optional[BaseException]


class Throttle:
    """Spaces successive :meth:`wait` returns at least *interval_ms* apart, across all callers."""

    def __init__(self, interval_ms: int):
        self.interval = interval_ms / 1000.0
        self._lock = asyncio.Lock()
        self._next_start = 0.0

    async def wait(self) -> None:
        if self.interval <= 0:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            delay = self._next_start - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_start = loop.time() + self.interval


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Crawler:
    """Crawl one site into a :class:`PageStore`.

    Args:
        base_url: Seed URL; its origin (or root domain with
            ``follow_subdomains``) bounds the crawl.
        config: Validated per-run policy.
        store: Destination page store.
        fetch: ``async (url) -> PageSnapshot``; defaults to the HTTP/browser
            fetcher configured from *config*.
        robots: robots.txt checker; defaults to :class:`RobotsPolicy` when
            ``config.respect_robots`` is set.
        renderer: Browser renderer for ``render="browser"``/``"auto"``.
    """

    def __init__(
        self,
        base_url: str,
        config: CrawlConfig,
        store: PageStore,
        fetch: Optional[FetchFn] = None,
        robots: Optional[RobotsChecker] = None,
        renderer: Optional[Renderer] = None,
    ):
        self.base_url = base_url
        self.config = config
        self.store = store
        self._fetch = fetch
        self._robots = robots
        self._renderer = renderer
        self._throttle: Optional[Throttle] = None

    def _validate(self) -> str:
        base = normalize(self.base_url)
        if urlsplit(base).scheme not in ALLOWED_SCHEMES:
            raise ConfigError(f"Base URL must be http(s): {self.base_url!r}")
        if self._fetch is None and self.config.render == "browser" and self._renderer is None:
            raise ConfigError("render='browser' requires a renderer")
        return base

    async def _fetch_with_retry(self, fetch: FetchFn, url: str) -> PageSnapshot:
        attempt = 1
        while True:
            await self._throttle.wait()
            try:
                return await fetch(url)
            except FetchError as exc:
                if not exc.retryable or attempt >= MAX_ATTEMPTS:
                    raise
                logger.info(
                    "Crawler: attempt %d/%d for %s failed – %s", attempt, MAX_ATTEMPTS, url, exc.message
                )
                await asyncio.sleep(RETRY_BACKOFF * attempt)
            attempt += 1

    async def _worker(
        self,
        fetch: FetchFn,
        work: "asyncio.Queue[tuple]",
        done: "asyncio.Queue[_Completion]",
    ) -> None:
        while True:
            url, depth = await work.get()
            try:
                snapshot = await self._fetch_with_retry(fetch, url)
            except Exception as exc:
                await done.put(_Completion(url, depth, None, exc))
            else:
                await done.put(_Completion(url, depth, snapshot, None))
            finally:
                work.task_done()

    def _to_page(self, completion: _Completion) -> Page:
        page_id = to_id(completion.url)
        if completion.snapshot is None:
            return Page(
                id=page_id,
                url=completion.url,
                status=FAILED_STATUS,
                error=str(completion.error),
                depth=completion.depth,
                crawled_at=_now(),
            )
        data = completion.snapshot.model_dump()
        data["url"] = completion.url
        return Page(id=page_id, depth=completion.depth, crawled_at=_now(), **data)

    def _limit_reached(self, frontier: Frontier) -> bool:
        # In-flight fetches may all succeed, so they count against the budget
        return frontier.successful_pages + frontier.in_flight >= self.config.max_pages

    async def _dispatch(self, frontier: Frontier, robots: Optional[RobotsChecker], work) -> None:
        while frontier.in_flight < self.config.concurrency and not self._limit_reached(frontier):
            item = frontier.pop()
            if item is None:
                return
            url, depth = item
            if robots is not None and not await robots.allowed(url):
                frontier.exclude(url, "robots")
                continue
            frontier.start(url)
            work.put_nowait((url, depth))

    async def _crawl(self, frontier: Frontier, fetch: FetchFn, robots: Optional[RobotsChecker]) -> None:
        work: asyncio.Queue = asyncio.Queue()
        done: asyncio.Queue = asyncio.Queue()
        workers = [
            asyncio.create_task(self._worker(fetch, work, done))
            for _ in range(self.config.concurrency)
        ]
        try:
            while True:
                await self._dispatch(frontier, robots, work)
                if frontier.in_flight == 0:
                    break
                completion = await done.get()
                if completion.error is not None and not isinstance(completion.error, FetchError):
                    raise completion.error
                if completion.error is not None:
                    logger.warning("Crawler: failed %s – %s", completion.url, completion.error)
                page = self._to_page(completion)
                frontier.record(page)
                logger.info(
                    "Crawler: [%d] %s (status %d, depth %d)",
                    frontier.successful_pages,
                    page.url,
                    page.status,
                    completion.depth,
                )
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def run(self, resume: bool = False) -> CrawlStats:
        """Crawl until the frontier is empty or ``max_pages`` successful pages are stored.

        A fresh run clears the store first.  With *resume*, URLs already in
        the store are treated as visited and never fetched again.

        Raises:
            ConfigError: for an invalid base URL or configuration, before any fetch.
        """
        base = self._validate()
        started_at = _now()
        self._throttle = Throttle(self.config.throttle)

        frontier = Frontier(base, self.config, self.store)
        if resume:
            previous = self.store.get_metadata("baseUrl")
            if previous and previous != base:
                logger.warning("Crawler: resuming %s on a store crawled from %s", base, previous)
            frontier.restore()
        else:
            self.store.clear()
            frontier.discover(base, 0)

        async with httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent},
            timeout=settings.request_timeout,
            follow_redirects=False,
        ) as client:
            fetch = self._fetch or functools.partial(
                fetch_page,
                mode=self.config.render,
                client=client,
                renderer=self._renderer,
                screenshot=self.config.screenshot,
            )
            robots = None
            if self.config.respect_robots:
                robots = self._robots or RobotsPolicy(client)

            logger.info(
                "Crawler: %s %s (max_pages=%d, max_depth=%d, concurrency=%d)",
                "resuming" if resume else "starting",
                base,
                self.config.max_pages,
                self.config.max_depth,
                self.config.concurrency,
            )
            await self._crawl(frontier, fetch, robots)

        stats = CrawlStats(
            base_url=base,
            fetched=frontier.fetched,
            succeeded=frontier.succeeded,
            failed=frontier.failed,
            excluded=sum(frontier.exclusions.values()),
            stored_pages=self.store.count(),
            successful_pages=self.store.success_count(),
            limit_reached=frontier.successful_pages >= self.config.max_pages,
            resumed=resume,
        )
        self.store.set_metadata("baseUrl", base)
        self.store.set_metadata("crawlConfig", self.config.to_json_dict())
        self.store.set_metadata(
            "lastCrawl",
            {
                "startedAt": started_at.isoformat(),
                "finishedAt": _now().isoformat(),
                "stats": stats._asdict(),
            },
        )
        logger.info(
            "Crawler: done – %d fetched, %d ok, %d failed, %d excluded",
            stats.fetched,
            stats.succeeded,
            stats.failed,
            stats.excluded,
        )
        return stats

