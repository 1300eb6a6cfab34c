"""Tests for fetcher.fetch and the Playwright renderer.

``respx`` patches ``httpx`` at the transport layer, so no request leaves the
process.  Private-address blocking is switched off because it resolves the
host with DNS.
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from playwright.async_api import Error as PlaywrightError

from contentmap.config import settings
from contentmap.services import fetcher
from contentmap.services.browser_fetcher import PlaywrightRenderer, RenderResult
from contentmap.services.errors import ConfigError, FetchError
from contentmap.services.fetcher import fetch, looks_unrendered

_ARTICLE = """
<html><head><title>Hello</title></head>
<body><main><h1>Hello</h1>
<p>This server-rendered page has more than enough readable words to count as real
content, so the fetcher never needs to fall back to the browser renderer here.</p>
<a href="/next">Next</a></main></body></html>
"""

_SPA_SHELL = """
<html><head><title>App</title></head>
<body><div id="root"></div><script src="/bundle.js"></script></body></html>
"""

_RENDERED = """
<html><head><title>App</title></head>
<body><main><h1>Rendered</h1><p>Content produced by client-side JavaScript.</p></main></body></html>
"""


@pytest.fixture(autouse=True)
def allow_any_host(monkeypatch):
    monkeypatch.setattr(settings, "block_private_addresses", False)


class FakeRenderer:
    def __init__(self, html: str = _RENDERED, status: int = 200):
        self.html = html
        self.status = status
        self.calls = []

    async def render(self, url, screenshot="none"):
        self.calls.append((url, screenshot))
        shot = "/tmp/shot.png" if screenshot != "none" else None
        return RenderResult(url=url, status=self.status, html=self.html, screenshot=shot)


class TestHttpFetch:
    def test_success_snapshot(self):
        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, html=_ARTICLE))
            snapshot = asyncio.run(fetch("https://example.com/"))

        assert snapshot.status == 200
        assert snapshot.title == "Hello"
        assert snapshot.redirect_chain is None
        assert [l.href for l in snapshot.links] == ["https://example.com/next"]
        assert snapshot.content_hash

    def test_http_error_status_is_data(self):
        with respx.mock:
            respx.get("https://example.com/missing").mock(
                return_value=httpx.Response(404, html="<html><title>Not found</title></html>")
            )
            snapshot = asyncio.run(fetch("https://example.com/missing"))

        assert snapshot.status == 404
        assert not snapshot.is_success

    def test_server_error_is_data(self):
        with respx.mock:
            respx.get("https://example.com/boom").mock(return_value=httpx.Response(500, text=""))
            snapshot = asyncio.run(fetch("https://example.com/boom"))

        assert snapshot.status == 500

    def test_redirect_chain_recorded(self):
        with respx.mock:
            respx.get("https://example.com/old").mock(
                return_value=httpx.Response(301, headers={"Location": "/middle"})
            )
            respx.get("https://example.com/middle").mock(
                return_value=httpx.Response(302, headers={"Location": "https://example.com/new/"})
            )
            respx.get("https://example.com/new").mock(return_value=httpx.Response(200, html=_ARTICLE))
            snapshot = asyncio.run(fetch("https://example.com/old"))

        assert snapshot.url == "https://example.com/old"
        assert snapshot.status == 200
        assert snapshot.redirect_chain == ["https://example.com/middle", "https://example.com/new"]

    def test_redirect_loop_fails(self):
        with respx.mock:
            respx.get("https://example.com/loop").mock(
                return_value=httpx.Response(302, headers={"Location": "/loop"})
            )
            with pytest.raises(FetchError) as exc_info:
                asyncio.run(fetch("https://example.com/loop"))

        assert "redirects" in exc_info.value.message

    def test_non_html_body_is_not_parsed(self):
        with respx.mock:
            respx.get("https://example.com/report").mock(
                return_value=httpx.Response(
                    200, content=b"%PDF-1.4", headers={"Content-Type": "application/pdf"}
                )
            )
            snapshot = asyncio.run(fetch("https://example.com/report"))

        assert snapshot.status == 200
        assert snapshot.title == ""
        assert snapshot.links == []

    def test_timeout_is_retryable(self):
        with respx.mock:
            respx.get("https://example.com/slow").mock(side_effect=httpx.ConnectTimeout)
            with pytest.raises(FetchError) as exc_info:
                asyncio.run(fetch("https://example.com/slow"))

        assert exc_info.value.retryable
        assert exc_info.value.url == "https://example.com/slow"

    def test_oversized_body_fails(self, monkeypatch):
        monkeypatch.setattr(fetcher, "MAX_CONTENT_SIZE", 100)
        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, html=_ARTICLE))
            with pytest.raises(FetchError) as exc_info:
                asyncio.run(fetch("https://example.com/"))

        assert not exc_info.value.retryable

    def test_private_address_blocked(self, monkeypatch):
        monkeypatch.setattr(settings, "block_private_addresses", True)
        monkeypatch.setattr(fetcher, "_is_private_address", lambda host: True)
        with pytest.raises(FetchError):
            asyncio.run(fetch("http://intranet.example.com/"))

    def test_shared_client_is_left_open(self):
        async def run():
            async with httpx.AsyncClient() as client:
                await fetch("https://example.com/", client=client)
                return client.is_closed

        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, html=_ARTICLE))
            assert asyncio.run(run()) is False


class TestRenderModes:
    def test_browser_mode_requires_renderer(self):
        with pytest.raises(ConfigError):
            asyncio.run(fetch("https://example.com/", mode="browser"))

    def test_browser_mode_uses_renderer(self):
        renderer = FakeRenderer()
        snapshot = asyncio.run(
            fetch("https://example.com/", mode="browser", renderer=renderer, screenshot="fullPage")
        )

        assert renderer.calls == [("https://example.com/", "fullPage")]
        assert snapshot.title == "App"
        assert snapshot.screenshot == "/tmp/shot.png"

    def test_auto_falls_back_for_app_shell(self):
        renderer = FakeRenderer()
        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, html=_SPA_SHELL))
            snapshot = asyncio.run(fetch("https://example.com/", mode="auto", renderer=renderer))

        assert len(renderer.calls) == 1
        assert "Rendered" in snapshot.main_content

    def test_auto_keeps_server_rendered_page(self):
        renderer = FakeRenderer()
        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, html=_ARTICLE))
            snapshot = asyncio.run(fetch("https://example.com/", mode="auto", renderer=renderer))

        assert renderer.calls == []
        assert snapshot.title == "Hello"

    def test_auto_counts_words_of_text_not_markdown(self):
        # 12 words of text, but "# Word" markdown doubles the token count
        headings = "".join(f"<h2>Section{i}</h2>" for i in range(12))
        shell = f'<html><body><div id="root">{headings}</div></body></html>'
        renderer = FakeRenderer()
        with respx.mock:
            respx.get("https://example.com/").mock(return_value=httpx.Response(200, html=shell))
            asyncio.run(fetch("https://example.com/", mode="auto", renderer=renderer))

        assert len(renderer.calls) == 1


class TestLooksUnrendered:
    def test_app_shell(self):
        assert looks_unrendered(_SPA_SHELL, 0)

    def test_plenty_of_words(self):
        assert not looks_unrendered(_SPA_SHELL, 500)

    def test_plain_page(self):
        assert not looks_unrendered("<html><body><p>short</p></body></html>", 1)


class TestPlaywrightRenderer:
    def test_context_closed_when_page_cannot_open(self):
        context = AsyncMock()
        context.new_page.side_effect = PlaywrightError("Target closed")
        browser = AsyncMock()
        browser.new_context.return_value = context
        renderer = PlaywrightRenderer()
        renderer._browser = browser

        with pytest.raises(FetchError):
            asyncio.run(renderer.render("https://example.com/"))

        context.close.assert_awaited_once()
