"""Fetch one URL and turn the response into a :class:`PageSnapshot`.

HTTP status codes are data, not errors: a 404 or 500 comes back as a
snapshot carrying that status.  Only network-level failures (timeouts, DNS,
refused connections, TLS) raise :class:`FetchError`.
"""

import ipaddress
import logging
import re
import socket
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx

from contentmap.config import settings
from contentmap.models.config import RenderMode, ScreenshotMode
from contentmap.models.page import PageSnapshot
from contentmap.services.browser_fetcher import Renderer
from contentmap.services.errors import ConfigError, FetchError, InvalidURLError
from contentmap.services.extractor import Extracted, content_hash, extract
from contentmap.services.urls import ALLOWED_SCHEMES, normalize

logger = logging.getLogger(__name__)

MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_REDIRECTS = 10

_DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

# Present in the *un-rendered* HTML shell of client-side rendered apps
_SPA_PATTERN = re.compile(
    r'<div\s[^>]*\bid=["\'](?:root|app|__next|__nuxt)["\']'
    r"|window\.__NUXT__"
    r"|__NEXT_DATA__"
    r"|ng-version="
    r"|data-reactroot",
    re.IGNORECASE,
)
_SPA_MIN_WORDS = 20

# Transport failures worth another attempt
_RETRYABLE_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)


def _is_private_address(hostname: str) -> bool:
    """Return True if *hostname* resolves to a private, loopback, or link-local address."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return False

    for info in infos:
        # Strip IPv6 zone IDs (e.g. "::1%eth0" → "::1")
        raw_ip = info[4][0].split("%")[0]
        try:
            addr = ipaddress.ip_address(raw_ip)
        except ValueError:
            continue
        if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved:
            return True
    return False


def _validate_url(url: str) -> None:
    """Raise FetchError if *url* fails scheme / private-address validation."""
    parsed = urlparse(url)
    if parsed.scheme not in ALLOWED_SCHEMES:
        raise FetchError(url, f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")
    if not parsed.hostname:
        raise FetchError(url, "URL must have a valid hostname.")
    if settings.block_private_addresses and _is_private_address(parsed.hostname):
        raise FetchError(url, "Requests to private/internal addresses are not allowed.")


def looks_unrendered(html: str, word_count: int) -> bool:
    """True when *html* is a JavaScript app shell whose content is rendered client-side."""
    return word_count < _SPA_MIN_WORDS and bool(_SPA_PATTERN.search(html))


def _is_html(content_type: str) -> bool:
    if not content_type:
        return True
    content_type = content_type.lower()
    return "html" in content_type or "xml" in content_type


async def _read_body(response: httpx.Response, url: str) -> str:
    content_length = response.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
        raise FetchError(url, "Response body exceeds the maximum allowed size.")

    chunks = []
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > MAX_CONTENT_SIZE:
            raise FetchError(url, "Response body exceeds the maximum allowed size.")
        chunks.append(chunk)
    return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")


async def _get(
    client: httpx.AsyncClient, url: str
) -> Tuple[str, int, str, str, List[str]]:
    """GET *url*, following redirects manually so every hop is validated.

    Returns:
        ``(final_url, status, content_type, body, redirect_chain)``
    """
    _validate_url(url)
    current_url = url
    chain: List[str] = []

    for _ in range(MAX_REDIRECTS + 1):
        async with client.stream("GET", current_url) as response:
            location = response.headers.get("location", "")
            if response.is_redirect and location:
                next_url = urljoin(current_url, location)
                try:
                    next_url = normalize(next_url)
                except InvalidURLError as exc:
                    raise FetchError(url, f"Invalid redirect target {location!r}") from exc
                _validate_url(next_url)
                chain.append(next_url)
                current_url = next_url
                continue

            content_type = response.headers.get("content-type", "")
            body = await _read_body(response, url) if _is_html(content_type) else ""
            return current_url, response.status_code, content_type, body, chain

    raise FetchError(url, "Too many redirects.")


def _snapshot(
    url: str,
    status: int,
    extracted: Optional[Extracted],
    redirect_chain: Optional[List[str]] = None,
    screenshot: Optional[str] = None,
) -> PageSnapshot:
    if extracted is None:
        return PageSnapshot(
            url=url,
            status=status,
            redirect_chain=redirect_chain or None,
            content_hash=content_hash(""),
            screenshot=screenshot,
        )
    return PageSnapshot(
        url=url,
        canonical=extracted.canonical,
        status=status,
        redirect_chain=redirect_chain or None,
        title=extracted.title,
        meta=extracted.meta,
        headings=extracted.headings,
        lang=extracted.lang,
        json_ld=extracted.json_ld,
        links=extracted.links,
        main_content=extracted.main_content,
        content_hash=extracted.content_hash,
        screenshot=screenshot,
        fragments=extracted.fragments,
    )


def build_snapshot(
    url: str,
    status: int,
    html: str,
    final_url: Optional[str] = None,
    redirect_chain: Optional[List[str]] = None,
    screenshot: Optional[str] = None,
) -> PageSnapshot:
    """Assemble a :class:`PageSnapshot` for *url* from a fetched document."""
    extracted = extract(html, final_url or url) if html.strip() else None
    return _snapshot(url, status, extracted, redirect_chain, screenshot)


async def _fetch_rendered(
    url: str, renderer: Renderer, screenshot: ScreenshotMode
) -> PageSnapshot:
    result = await renderer.render(url, screenshot=screenshot)
    chain = None
    if result.url and result.url != url:
        try:
            chain = [normalize(result.url)]
        except InvalidURLError:
            chain = None
    return build_snapshot(
        url, result.status, result.html, result.url, chain, screenshot=result.screenshot
    )


async def fetch(
    url: str,
    mode: RenderMode = "http",
    *,
    client: Optional[httpx.AsyncClient] = None,
    renderer: Optional[Renderer] = None,
    screenshot: ScreenshotMode = "none",
) -> PageSnapshot:
    """Fetch *url* and return its :class:`PageSnapshot`.

    Args:
        url: Normalized http(s) URL.
        mode: ``"http"``, ``"browser"`` or ``"auto"`` (HTTP first, render when
            the response is an unrendered app shell).
        client: Shared :class:`httpx.AsyncClient`; a short-lived one is
            created when omitted.
        renderer: Browser renderer used for ``browser``/``auto`` modes.
        screenshot: Screenshot mode passed to the renderer.

    Raises:
        FetchError: on network-level failures.
        ConfigError: if a rendering mode is requested without a renderer.
    """
    if mode == "browser":
        if renderer is None:
            raise ConfigError("render='browser' requires a renderer")
        return await _fetch_rendered(url, renderer, screenshot)

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent, **_DEFAULT_HEADERS},
            timeout=settings.request_timeout,
            follow_redirects=False,
        )
    try:
        final_url, status, _content_type, body, chain = await _get(client, url)
    except _RETRYABLE_ERRORS as exc:
        raise FetchError(url, f"{type(exc).__name__}: {exc}", retryable=True) from exc
    except httpx.HTTPError as exc:
        raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc
    finally:
        if own_client:
            await client.aclose()

    extracted = extract(body, final_url) if body.strip() else None
    snapshot = _snapshot(url, status, extracted, chain)

    if mode == "auto" and renderer is not None and snapshot.is_success:
        word_count = extracted.word_count if extracted else 0
        if looks_unrendered(body, word_count):
            logger.info("Fetcher: %s looks client-side rendered, using browser", url)
            return await _fetch_rendered(url, renderer, screenshot)

    return snapshot
