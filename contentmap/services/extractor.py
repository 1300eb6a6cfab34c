"""HTML → page fields: metadata, headings, links with their DOM zone, main content, fragments."""

import hashlib
import json
import logging
import re
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from markdownify import markdownify

from contentmap.models.page import Fragment, Heading, Link
from contentmap.services.errors import InvalidURLError
from contentmap.services.sanitizer import sanitize
from contentmap.services.urls import ALLOWED_SCHEMES, normalize

logger = logging.getLogger(__name__)

_SKIP_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")

_WS_RE = re.compile(r"\s+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_PRICE_RE = re.compile(r"(?:[$€£¥]\s?\d[\d.,]*|\d[\d.,]*\s?(?:USD|EUR|GBP|€|\$))")

# Elements considered as candidate content fragments (cards, teasers, list items …)
_FRAGMENT_TAGS = {"article", "li", "figure", "blockquote", "section", "div"}
_FRAGMENT_MIN_SLOTS = 2
_FRAGMENT_MAX_SLOTS = 12
_FRAGMENT_MIN_TEXT = 10
_FRAGMENT_MAX_TEXT = 1500
_MAX_FRAGMENTS_PER_PAGE = 60
_SLOT_VALUE_MAX = 300


class Extracted(NamedTuple):
    title: str
    meta: Dict[str, str]
    headings: List[Heading]
    lang: Optional[str]
    json_ld: Optional[List[Any]]
    canonical: Optional[str]
    links: List[Link]
    main_content: Optional[str]
    content_hash: str
    fragments: List[Fragment]
    word_count: int


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def content_hash(text: str) -> str:
    """SHA-256 of whitespace-collapsed *text*; identical content always hashes identically."""
    return hashlib.sha256(collapse_whitespace(text).encode("utf-8")).hexdigest()


def _extract_title(soup: BeautifulSoup) -> str:
    title_tag = soup.find("title")
    if title_tag and title_tag.get_text(strip=True):
        return title_tag.get_text(strip=True)
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def _extract_meta(soup: BeautifulSoup) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("name") or tag.get("property") or tag.get("itemprop")
        value = tag.get("content")
        if key and value and str(key).lower() not in meta:
            meta[str(key).lower()] = str(value).strip()
    return meta


def _extract_headings(soup: BeautifulSoup) -> List[Heading]:
    headings: List[Heading] = []
    for tag in soup.find_all(re.compile(r"^h[1-6]$")):
        text = tag.get_text(" ", strip=True)
        if text:
            headings.append(Heading(level=int(tag.name[1]), text=collapse_whitespace(text)))
    return headings


def _extract_json_ld(soup: BeautifulSoup) -> Optional[List[Any]]:
    """Return every JSON-LD block, with top-level arrays and ``@graph`` flattened."""
    blocks: List[Any] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Extractor: skipping invalid JSON-LD block")
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("@graph"), list):
                blocks.extend(item["@graph"])
            else:
                blocks.append(item)
    return blocks or None


def _extract_canonical(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """Return the canonical URL declared by the page, or *None* if absent."""
    candidates = []
    link_tag = soup.find("link", rel="canonical")
    if link_tag and link_tag.get("href"):
        candidates.append(str(link_tag["href"]))
    og_url = soup.find("meta", attrs={"property": "og:url"})
    if og_url and og_url.get("content"):
        candidates.append(str(og_url["content"]))

    for href in candidates:
        try:
            return normalize(href, base=base_url)
        except InvalidURLError:
            continue
    return None


def _is_breadcrumb(tag: Tag) -> bool:
    classes = " ".join(tag.get("class", []) or []).lower()
    label = str(tag.get("aria-label", "")).lower()
    return "breadcrumb" in classes or "breadcrumb" in label


def _link_context(a: Tag) -> str:
    """Classify where a link sits on the page.

    Breadcrumb trails win over every other zone, then footer, then
    header/nav, then aside; anything else is in-body (``main``).
    """
    names = set()
    for parent in a.parents:
        if not isinstance(parent, Tag):
            continue
        if _is_breadcrumb(parent):
            return "breadcrumb"
        names.add(parent.name)
        if parent.get("role") == "navigation":
            names.add("nav")
        elif parent.get("role") == "contentinfo":
            names.add("footer")

    if "footer" in names:
        return "footer"
    if "nav" in names:
        return "nav"
    if "header" in names:
        return "header"
    if "aside" in names:
        return "aside"
    return "main"


def _extract_links(soup: BeautifulSoup, base_url: str) -> List[Link]:
    """Return normalized http(s) links, deduplicated per (target, zone), in document order."""
    seen: set = set()
    links: List[Link] = []
    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        if not href or href.lower().startswith(_SKIP_HREF_PREFIXES):
            continue
        try:
            abs_url = normalize(href, base=base_url)
        except InvalidURLError:
            continue
        if urlsplit(abs_url).scheme not in ALLOWED_SCHEMES:
            continue

        context = _link_context(a)
        key = (abs_url, context)
        if key in seen:
            continue
        seen.add(key)

        rel = a.get("rel")
        links.append(
            Link(
                href=abs_url,
                text=collapse_whitespace(a.get_text(" ", strip=True))[:200],
                context=context,
                rel=" ".join(rel) if isinstance(rel, list) else rel,
            )
        )
    return links


def _find_main_content(soup: BeautifulSoup) -> Tag:
    """Return the most likely main-content element, falling back to ``<body>``."""
    for selector in (
        "main",
        '[role="main"]',
        "article",
        "#content",
        ".content",
        ".entry-content",
        ".post-content",
    ):
        node = soup.select_one(selector)
        if node and node.get_text(strip=True):
            return node
    return soup.find("body") or soup


def _tidy_markdown(text: str) -> str:
    lines = [line.rstrip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def _fragment_role(tag: Tag) -> str:
    role = tag.get("role") or tag.get("itemtype") or ""
    if role:
        return str(role).rstrip("/").rsplit("/", 1)[-1].lower()
    classes = tag.get("class", []) or []
    if classes:
        return re.sub(r"[\d_-]+$", "", str(classes[0]).lower())
    return ""


def _slot_kind(tag: Tag) -> Optional[str]:
    name = tag.name
    if re.fullmatch(r"h[1-6]", name):
        return "heading"
    if name == "img":
        return "image"
    if name == "time":
        return "time"
    if name == "address":
        return "address"
    if name == "a" and tag.get("href"):
        return "link"
    if name in ("p", "figcaption", "blockquote", "dd"):
        text = tag.get_text(" ", strip=True)
        if not text:
            return None
        return "price" if _PRICE_RE.fullmatch(text) else "text"
    if name in ("span", "strong", "b", "div") and not tag.find(True):
        text = tag.get_text(" ", strip=True)
        if text and _PRICE_RE.fullmatch(text):
            return "price"
    return None


def _slot_value(tag: Tag, kind: str, base_url: str) -> str:
    if kind == "image":
        src = tag.get("src") or tag.get("data-src") or ""
        return urljoin(base_url, str(src)) if src else str(tag.get("alt", ""))
    if kind == "link":
        return urljoin(base_url, str(tag["href"]))
    if kind == "time" and tag.get("datetime"):
        return str(tag["datetime"])
    return collapse_whitespace(tag.get_text(" ", strip=True))[:_SLOT_VALUE_MAX]


def _build_fragment(tag: Tag, base_url: str) -> Optional[Fragment]:
    tokens: List[str] = []
    slots: Dict[str, str] = {}
    counts: Dict[str, int] = {}
    for child in tag.find_all(True):
        kind = _slot_kind(child)
        if kind is None:
            continue
        counts[kind] = counts.get(kind, 0) + 1
        slot_name = kind if counts[kind] == 1 else f"{kind}_{counts[kind]}"
        slots[slot_name] = _slot_value(child, kind, base_url)
        if not tokens or tokens[-1] != kind:
            tokens.append(kind)

    if not (_FRAGMENT_MIN_SLOTS <= len(slots) <= _FRAGMENT_MAX_SLOTS) or len(tokens) < 2:
        return None

    role = _fragment_role(tag)
    head = f"{tag.name}.{role}" if role else tag.name
    return Fragment(signature=f"{head}|{'+'.join(tokens)}", tag=tag.name, slots=slots)


def _extract_fragments(main: Tag, base_url: str) -> List[Fragment]:
    fragments: List[Fragment] = []
    seen: set = set()
    for tag in main.find_all(_FRAGMENT_TAGS):
        if tag.name == "div" and not tag.get("class"):
            continue
        text_len = len(tag.get_text(" ", strip=True))
        if not (_FRAGMENT_MIN_TEXT <= text_len <= _FRAGMENT_MAX_TEXT):
            continue
        fragment = _build_fragment(tag, base_url)
        if fragment is None:
            continue
        key = (fragment.signature, tuple(fragment.slots.items()))
        if key in seen:
            continue
        seen.add(key)
        fragments.append(fragment)
        if len(fragments) >= _MAX_FRAGMENTS_PER_PAGE:
            break
    return fragments


def _main_content(html: str, base_url: str) -> Tuple[str, str, List[Fragment]]:
    clean_soup = sanitize(html)
    main_node = _find_main_content(clean_soup)
    text = collapse_whitespace(main_node.get_text(" ", strip=True))
    markdown = _tidy_markdown(markdownify(str(main_node), heading_style="ATX"))
    fragments = _extract_fragments(main_node, base_url)
    return text, markdown, fragments


def extract(html: str, base_url: str) -> Extracted:
    """Extract every page field contentmap stores from *html*.

    Metadata, headings and links come from the raw document (links keep the
    zone they were found in); main content and fragments come from the
    sanitized tree.  A failure in the content pass leaves those fields empty
    instead of losing the page.
    """
    raw_soup = BeautifulSoup(html, "lxml")

    html_tag = raw_soup.find("html")
    lang = str(html_tag.get("lang")).strip() if html_tag and html_tag.get("lang") else None

    text, markdown, fragments = "", "", []
    try:
        text, markdown, fragments = _main_content(html, base_url)
    except (ValueError, AttributeError, RecursionError) as exc:
        logger.warning("Extractor: main content extraction failed for %s – %s", base_url, exc)

    return Extracted(
        title=_extract_title(raw_soup),
        meta=_extract_meta(raw_soup),
        headings=_extract_headings(raw_soup),
        lang=lang,
        json_ld=_extract_json_ld(raw_soup),
        canonical=_extract_canonical(raw_soup, base_url),
        links=_extract_links(raw_soup, base_url),
        main_content=markdown or None,
        content_hash=content_hash(text),
        fragments=fragments,
        word_count=len(text.split()),
    )
