"""Duplicate-page filtering ahead of analysis.

A site usually serves the same document under several URLs: tracking
parameters, trailing ``index.html``, print views, redirects that were
crawled from both ends.  Analysing each copy would inflate page-type counts
and fake relationships, so only one page per canonical URL and per main
content survives.
"""

from typing import Iterable, List, Set

from contentmap.models.page import Page
from contentmap.services.extractor import content_hash


def _dedup_key(page: Page) -> str:
    return page.canonical or page.url


def dedupe_pages(pages: Iterable[Page]) -> List[Page]:
    """Return the successful pages of *pages*, one per canonical URL and content hash.

    Order is preserved; the first page seen wins.  Pages without main
    content are only deduplicated by URL, since every empty page shares the
    same hash.
    """
    empty_hash = content_hash("")
    seen_keys: Set[str] = set()
    seen_hashes: Set[str] = set()
    unique: List[Page] = []

    for page in pages:
        if not page.is_success:
            continue
        key = _dedup_key(page)
        if key in seen_keys:
            continue
        if page.content_hash and page.content_hash != empty_hash:
            if page.content_hash in seen_hashes:
                continue
            seen_hashes.add(page.content_hash)
        seen_keys.add(key)
        seen_keys.add(page.url)
        unique.append(page)

    return unique
