"""Site navigation from link placement: primary nav, footer, breadcrumbs and the page link graph."""

import logging
import math
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Set

from contentmap.models.analysis import GraphEdge, GraphNode, Navigation, NavItem, SiteGraph
from contentmap.models.page import Page
from contentmap.services.errors import AnalysisError, InvalidURLError
from contentmap.services.features import url_pattern
from contentmap.services.urls import normalize, origin, path_of, path_segments

logger = logging.getLogger(__name__)

PRIMARY_CONTEXTS = {"header", "nav"}
FOOTER_CONTEXTS = {"footer"}

# Share of same-pattern pages that must agree on a breadcrumb ancestor
BREADCRUMB_CONSISTENCY = 0.5

# Site graph edge weights
NAV_EDGE_CONFIDENCE = 0.9
LINK_EDGE_CONFIDENCE = 0.7


class Crumb(NamedTuple):
    label: str
    url: str


def _target_key(href: str, page_url: str) -> str:
    """Path for same-origin targets, the full URL otherwise."""
    if origin(href) == origin(page_url):
        return path_of(href)
    return href


def _json_ld_crumbs(page: Page) -> List[Crumb]:
    for block in page.json_ld or []:
        if not isinstance(block, dict) or block.get("@type") != "BreadcrumbList":
            continue
        elements = block.get("itemListElement") or []
        if isinstance(elements, dict):
            elements = [elements]
        elements = sorted(
            (e for e in elements if isinstance(e, dict)),
            key=lambda e: e.get("position") if isinstance(e.get("position"), int) else 0,
        )
        trail: List[Crumb] = []
        for element in elements:
            item = element.get("item")
            name = element.get("name")
            if isinstance(item, dict):
                name = name or item.get("name")
                item = item.get("@id") or item.get("url")
            if not isinstance(item, str):
                continue
            try:
                trail.append(Crumb(str(name or "").strip(), normalize(item, base=page.url)))
            except InvalidURLError:
                continue
        if trail:
            return trail
    return []


def breadcrumb_trail(page: Page) -> List[Crumb]:
    """The page's breadcrumb trail: ``breadcrumb`` links, else a JSON-LD ``BreadcrumbList``."""
    trail = [Crumb(link.text, link.href) for link in page.links if link.context == "breadcrumb"]
    return trail or _json_ld_crumbs(page)


def breadcrumb_parent(page: Page) -> Optional[Crumb]:
    """The trail entry directly above *page* itself."""
    trail = [c for c in breadcrumb_trail(page) if c.url != page.url]
    return trail[-1] if trail else None


def is_ancestor(ancestor_url: str, url: str) -> bool:
    """True when *ancestor_url*'s path is a proper path prefix of *url*'s, on the same origin."""
    if origin(ancestor_url) != origin(url):
        return False
    parent = path_segments(ancestor_url)
    child = path_segments(url)
    return len(parent) < len(child) and child[: len(parent)] == parent


def _label_for(labels: Counter) -> str:
    # Most frequent label; ties go to the alphabetically first
    best = max(labels.values())
    return min(label for label, count in labels.items() if count == best)


def _build_items(
    counts: Counter, labels: Dict[str, Counter], min_frequency: int
) -> List[NavItem]:
    items = [
        NavItem(label=_label_for(labels[target]), target_pattern=target, frequency=count)
        for target, count in counts.items()
        if count >= min_frequency
    ]
    return sorted(items, key=lambda item: (-item.frequency, item.label, item.target_pattern))


def _zone_items(
    pages: Sequence[Page], contexts: Set[str], min_frequency: int
) -> List[NavItem]:
    counts: Counter = Counter()
    labels: Dict[str, Counter] = defaultdict(Counter)
    for page in pages:
        seen: Set[str] = set()
        for link in page.links:
            if link.context not in contexts:
                continue
            target = _target_key(link.href, page.url)
            if link.text:
                labels[target][link.text] += 1
            if target not in seen:
                seen.add(target)
                counts[target] += 1
    for target in counts:
        if not labels[target]:
            labels[target][target] += 1
    return _build_items(counts, labels, min_frequency)


def _breadcrumb_items(pages: Iterable[Page]) -> List[NavItem]:
    groups: Dict[str, List[Page]] = defaultdict(list)
    for page in pages:
        groups[url_pattern(page.url)].append(page)

    counts: Counter = Counter()
    labels: Dict[str, Counter] = defaultdict(Counter)
    for pattern in sorted(groups):
        members = groups[pattern]
        ancestors: Counter = Counter()
        group_labels: Dict[str, Counter] = defaultdict(Counter)
        for page in members:
            seen: Set[str] = set()
            for crumb in breadcrumb_trail(page):
                if not is_ancestor(crumb.url, page.url):
                    continue
                key = url_pattern(crumb.url)
                if crumb.label:
                    group_labels[key][crumb.label] += 1
                if key not in seen:
                    seen.add(key)
                    ancestors[key] += 1

        needed = math.ceil(BREADCRUMB_CONSISTENCY * len(members))
        for key, count in ancestors.items():
            if count >= needed:
                counts[key] += count
                labels[key].update(group_labels[key] or Counter({key: 1}))

    return _build_items(counts, labels, 1)


def build_site_graph(pages: Sequence[Page]) -> SiteGraph:
    """Nodes for *pages* and an edge for every link from one of them to another.

    Header and nav links carry more weight than links found elsewhere.
    """
    ids = {page.url: page.id for page in pages}
    nodes = [
        GraphNode(id=page.id, url=page.url, depth=len(path_segments(page.url))) for page in pages
    ]
    edges = [
        GraphEdge(
            from_id=page.id,
            to_id=ids[link.href],
            context=link.context,
            confidence=(
                NAV_EDGE_CONFIDENCE if link.context in PRIMARY_CONTEXTS else LINK_EDGE_CONFIDENCE
            ),
        )
        for page in pages
        for link in page.links
        if link.href in ids
    ]
    return SiteGraph(nodes=nodes, edges=edges)


def extract_navigation(pages: Sequence[Page], frequency_threshold: float = 0.3) -> Navigation:
    """Aggregate link placement across *pages* into a :class:`Navigation`.

    A header/nav (or footer) link is promoted when it appears in that zone
    on at least ``ceil(frequency_threshold * len(pages))`` pages; each page
    counts a target once.  Breadcrumb entries come from trails whose items
    are path ancestors of their page, kept when at least half of the pages
    sharing a URL pattern agree on them.

    Raises:
        AnalysisError: when *pages* is empty.
    """
    if not pages:
        raise AnalysisError("Cannot extract navigation from zero pages")

    min_frequency = max(1, math.ceil(round(frequency_threshold * len(pages), 9)))
    navigation = Navigation(
        primary_nav=_zone_items(pages, PRIMARY_CONTEXTS, min_frequency),
        footer=_zone_items(pages, FOOTER_CONTEXTS, min_frequency),
        breadcrumbs=_breadcrumb_items(pages),
        site_graph=build_site_graph(pages),
    )
    logger.info(
        "Navigation: %d primary, %d footer, %d breadcrumb items, %d graph edges from %d pages",
        len(navigation.primary_nav),
        len(navigation.footer),
        len(navigation.breadcrumbs),
        len(navigation.site_graph.edges),
        len(pages),
    )
    return navigation
