"""Shared fixtures: an in-memory page store and a factory for stored pages."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from contentmap.models.page import Heading, Link, Page
from contentmap.services.extractor import content_hash
from contentmap.services.page_store import PageStore
from contentmap.services.urls import normalize, to_id

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)
_counter = {"n": 0}


def make_page(
    url: str,
    *,
    status: int = 200,
    title: str = "",
    links: Optional[List[Any]] = None,
    headings: Optional[List[Any]] = None,
    main_content: Optional[str] = None,
    json_ld: Optional[List[Any]] = None,
    meta: Optional[Dict[str, str]] = None,
    **fields: Any,
) -> Page:
    """Build a :class:`Page` the way the crawler stores it.

    *links* may hold :class:`Link` objects or ``(href, text, context)``
    tuples; *headings* may hold ``(level, text)`` tuples.  Unless given,
    ``content_hash`` is derived from the URL so distinct pages never collide.
    """
    url = normalize(url)
    _counter["n"] += 1
    link_objs = [
        link if isinstance(link, Link) else Link(href=normalize(link[0], base=url), text=link[1], context=link[2])
        for link in links or []
    ]
    heading_objs = [
        h if isinstance(h, Heading) else Heading(level=h[0], text=h[1]) for h in headings or []
    ]
    fields.setdefault("content_hash", content_hash(main_content or f"page at {url}"))
    fields.setdefault("crawled_at", _EPOCH + timedelta(seconds=_counter["n"]))
    return Page(
        id=to_id(url),
        url=url,
        status=status,
        title=title,
        links=link_objs,
        headings=heading_objs,
        main_content=main_content,
        json_ld=json_ld,
        meta=meta or {},
        **fields,
    )


@pytest.fixture
def store():
    page_store = PageStore.open(":memory:")
    yield page_store
    page_store.close()
