"""robots.txt policy, loaded once per origin and cached for the rest of the crawl."""

import logging
from typing import Dict, Optional, Protocol
from urllib.robotparser import RobotFileParser

import httpx

from contentmap.config import settings
from contentmap.services.urls import origin

logger = logging.getLogger(__name__)

_ROBOTS_TIMEOUT = 5.0


class RobotsChecker(Protocol):
    async def allowed(self, url: str) -> bool:
        ...


class RobotsPolicy:
    """Answers "may we fetch this URL?" from each origin's ``/robots.txt``.

    Redirects to the file are followed (apex to ``www``, http to https).  A
    missing robots.txt (4xx) or an unreachable host allows everything; a
    server error (5xx) disallows the whole origin for the rest of the crawl.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = None,
    ):
        self._client = client
        self.user_agent = user_agent or settings.user_agent
        self._parsers: Dict[str, Optional[RobotFileParser]] = {}

    async def _load(self, site: str) -> Optional[RobotFileParser]:
        robots_url = f"{site}/robots.txt"
        headers = {"User-Agent": self.user_agent, "Accept": "text/plain,*/*"}
        try:
            if self._client is not None:
                response = await self._client.get(robots_url, headers=headers, follow_redirects=True)
            else:
                async with httpx.AsyncClient(
                    timeout=_ROBOTS_TIMEOUT, follow_redirects=True
                ) as client:
                    response = await client.get(robots_url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Robots: could not load %s – %s", robots_url, exc)
            return None

        parser = RobotFileParser(robots_url)
        status = response.status_code
        if status >= 500:
            logger.warning("Robots: %s answered %d, disallowing the site", robots_url, status)
            parser.disallow_all = True
        elif status >= 300:
            logger.info("Robots: no robots.txt at %s (status %d)", robots_url, status)
            parser.allow_all = True
        else:
            parser.parse(response.text.splitlines())
            logger.info("Robots: loaded %s", robots_url)
        return parser

    async def allowed(self, url: str) -> bool:
        site = origin(url)
        if site not in self._parsers:
            self._parsers[site] = await self._load(site)
        parser = self._parsers[site]
        if parser is None:
            return True
        return parser.can_fetch(self.user_agent, url)
