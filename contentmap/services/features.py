"""Per-page features for page-type clustering.

Each feature is a small object implementing :class:`FeatureExtractor`: it
reduces a page to a value and scores two such values in ``[0, 1]``.  The
clustering engine only ever sees the weighted sum, so extractors can be
added, removed or re-weighted without touching the algorithm.
"""

import re
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from contentmap.models.analysis import PageFeatures
from contentmap.models.page import Page
from contentmap.services.urls import path_segments

# A trailing segment this long made of [a-z0-9-] is a slug wherever it appears
SLUG_MIN_LENGTH = 12
RICH_CONTENT_MIN_CHARS = 1000

_NUMERIC_RE = re.compile(r"^\d+$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_SLUG_CHARS_RE = re.compile(r"^[a-z0-9-]+$")


# ---------------------------------------------------------------------------
# URL segment classifiers
# ---------------------------------------------------------------------------

def is_numeric(segment: str, index: int = 0, count: int = 1) -> bool:
    return bool(_NUMERIC_RE.match(segment))


def is_uuid(segment: str, index: int = 0, count: int = 1) -> bool:
    return bool(_UUID_RE.match(segment))


def is_date(segment: str, index: int = 0, count: int = 1) -> bool:
    return bool(_DATE_RE.match(segment))


def is_slug(segment: str, index: int = 0, count: int = 1) -> bool:
    """A hyphenated lowercase last segment below a parent, or any long hyphenated segment."""
    if index > 0 and index == count - 1 and _SLUG_RE.match(segment):
        return True
    return len(segment) > SLUG_MIN_LENGTH and bool(_SLUG_CHARS_RE.match(segment))


SegmentClassifier = Callable[[str, int, int], bool]

# First match wins
SEGMENT_CLASSIFIERS: List[Tuple[str, SegmentClassifier]] = [
    (":id", is_numeric),
    (":uuid", is_uuid),
    (":date", is_date),
    (":slug", is_slug),
]


def segment_placeholder(segment: str, index: int, count: int) -> str:
    for placeholder, matches in SEGMENT_CLASSIFIERS:
        if matches(segment, index, count):
            return placeholder
    return segment


def url_pattern(url: str) -> str:
    """Generalise *url*'s path: ``/blog/my-first-post`` → ``/blog/:slug``, ``/item/42`` → ``/item/:id``."""
    segments = path_segments(url)
    count = len(segments)
    return "/" + "/".join(
        segment_placeholder(seg, i, count) for i, seg in enumerate(segments)
    )


def pattern_segments(pattern: Optional[str]) -> List[str]:
    return [s for s in (pattern or "").split("/") if s]


def is_placeholder(segment: str) -> bool:
    return segment.startswith(":") or segment == "*"


# ---------------------------------------------------------------------------
# Presence flags
# ---------------------------------------------------------------------------

def json_ld_types(page: Page) -> List[str]:
    types: List[str] = []
    for item in page.json_ld or []:
        if not isinstance(item, dict):
            continue
        value = item.get("@type")
        for t in value if isinstance(value, list) else [value]:
            if isinstance(t, str) and t not in types:
                types.append(t)
    return types


def page_flags(page: Page) -> PageFeatures:
    """Boolean content signals for a single page."""
    content = (page.main_content or "").lower()
    headings_text = " ".join(h.text.lower() for h in page.headings)
    blocks = [b for b in (page.json_ld or []) if isinstance(b, dict)]
    types = json_ld_types(page)

    return PageFeatures(
        has_date=(
            "Article" in types
            or any(b.get("datePublished") for b in blocks)
            or "article:published_time" in page.meta
        ),
        has_author=(
            "author" in content
            or any(b.get("author") for b in blocks)
            or "author" in page.meta
        ),
        has_price="$" in content or "price" in content,
        has_form="contact" in headings_text or "form" in headings_text,
        has_gallery=any(
            "gallery" in link.href.lower() or "gallery" in link.text.lower() for link in page.links
        ),
        has_breadcrumbs=any(link.context == "breadcrumb" for link in page.links),
        has_related_content=any("related" in link.text.lower() for link in page.links),
        rich_content=len(page.main_content or "") > RICH_CONTENT_MIN_CHARS,
    )


def aggregate_flags(flags: Sequence[PageFeatures]) -> PageFeatures:
    """A flag is set for a group when more than half of its pages have it."""
    if not flags:
        return PageFeatures()
    half = len(flags) / 2
    return PageFeatures(
        **{
            name: sum(1 for f in flags if getattr(f, name)) > half
            for name in PageFeatures.model_fields
        }
    )


def heading_signature(page: Page) -> str:
    return "-".join(f"h{h.level}" for h in page.headings)


def dom_signature(pages: Iterable[Page], sample: int = 5) -> str:
    """The most common heading-level sequence among the first *sample* pages."""
    counts = Counter(heading_signature(p) for p in list(pages)[:sample])
    counts.pop("", None)
    if not counts:
        return "unknown"
    return counts.most_common(1)[0][0]


# ---------------------------------------------------------------------------
# Feature extractors
# ---------------------------------------------------------------------------

class FeatureExtractor(Protocol):
    name: str
    weight: float

    def extract(self, page: Page) -> Any:
        ...

    def similarity(self, a: Any, b: Any) -> float:
        ...


class UrlPatternFeature:
    """Shared leading segments of the generalised URL path."""

    name = "url_pattern"

    def __init__(self, weight: float = 0.5):
        self.weight = weight

    def extract(self, page: Page) -> Tuple[str, ...]:
        return tuple(pattern_segments(url_pattern(page.url)))

    def similarity(self, a: Tuple[str, ...], b: Tuple[str, ...]) -> float:
        if a == b:
            return 1.0
        common = 0
        for x, y in zip(a, b):
            if x != y:
                break
            common += 1
        return common / max(len(a), len(b))


class HeadingProfileFeature:
    """Counts of h1…h6 headings."""

    name = "heading_profile"

    def __init__(self, weight: float = 0.15):
        self.weight = weight

    def extract(self, page: Page) -> Tuple[int, ...]:
        counts = [0] * 6
        for h in page.headings:
            counts[h.level - 1] += 1
        return tuple(counts)

    def similarity(self, a: Tuple[int, ...], b: Tuple[int, ...]) -> float:
        total = sum(max(x, y) for x, y in zip(a, b))
        if total == 0:
            return 1.0
        return 1.0 - sum(abs(x - y) for x, y in zip(a, b)) / total


class PresenceFlagsFeature:
    """Agreement over the :class:`PageFeatures` flags."""

    name = "presence_flags"

    def __init__(self, weight: float = 0.15):
        self.weight = weight

    def extract(self, page: Page) -> Tuple[bool, ...]:
        return tuple(page_flags(page).model_dump().values())

    def similarity(self, a: Tuple[bool, ...], b: Tuple[bool, ...]) -> float:
        return sum(1 for x, y in zip(a, b) if x == y) / len(a)


class LinkDensityFeature:
    """In-body links per 100 words of main content."""

    name = "link_density"

    def __init__(self, weight: float = 0.1):
        self.weight = weight

    def extract(self, page: Page) -> float:
        words = len((page.main_content or "").split())
        body_links = sum(1 for link in page.links if link.context == "main")
        return body_links * 100.0 / max(words, 1)

    def similarity(self, a: float, b: float) -> float:
        high = max(a, b)
        if high == 0:
            return 1.0
        return 1.0 - abs(a - b) / high


class JsonLdTypesFeature:
    """Jaccard overlap of JSON-LD ``@type`` values."""

    name = "json_ld_types"

    def __init__(self, weight: float = 0.1):
        self.weight = weight

    def extract(self, page: Page) -> frozenset:
        return frozenset(json_ld_types(page))

    def similarity(self, a: frozenset, b: frozenset) -> float:
        if not a and not b:
            return 1.0
        return len(a & b) / len(a | b)


def default_extractors() -> List[FeatureExtractor]:
    return [
        UrlPatternFeature(),
        HeadingProfileFeature(),
        PresenceFlagsFeature(),
        LinkDensityFeature(),
        JsonLdTypesFeature(),
    ]


FeatureVector = Dict[str, Any]


def vectorize(page: Page, extractors: Sequence[FeatureExtractor]) -> FeatureVector:
    return {e.name: e.extract(page) for e in extractors}


def similarity(a: FeatureVector, b: FeatureVector, extractors: Sequence[FeatureExtractor]) -> float:
    """Weighted mean of the per-feature similarities, in ``[0, 1]``."""
    total_weight = sum(e.weight for e in extractors)
    if total_weight <= 0:
        return 0.0
    score = sum(e.weight * e.similarity(a[e.name], b[e.name]) for e in extractors)
    return min(1.0, max(0.0, score / total_weight))
