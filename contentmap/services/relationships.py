"""Typed relationships between page types (listing → detail, parent → child)."""

import logging
from typing import Dict, List, Optional, Sequence, Set

from contentmap.models.analysis import PageType, Relationship, RelationshipEvidence
from contentmap.models.page import Page
from contentmap.services.errors import AnalysisError
from contentmap.services.features import is_placeholder, pattern_segments
from contentmap.services.navigation import breadcrumb_parent

logger = logging.getLogger(__name__)

MAX_EVIDENCE = 5

# Share of the detail type's pages the listing pages must reach
LISTING_COVERAGE = 0.5
# Share of the child type's pages whose breadcrumb parent is in the parent type
PARENT_CONSISTENCY = 0.5


def extends_pattern(parent: Optional[str], child: Optional[str]) -> bool:
    """True when *child* adds segments below *parent*.

    ``/blog`` is extended by ``/blog/:slug``; a placeholder or ``*`` in the
    parent matches any segment.  ``/**`` patterns never count as a parent.
    """
    if parent is None or child is None or parent.endswith("**"):
        return False
    p = pattern_segments(parent)
    c = pattern_segments(child)
    if len(p) >= len(c):
        return False
    return all(a == b or is_placeholder(a) for a, b in zip(p, c))


class _Index:
    def __init__(self, page_types: Sequence[PageType], pages: Sequence[Page]):
        by_id = {p.id: p for p in pages}
        self.members: Dict[str, List[Page]] = {
            t.id: [by_id[pid] for pid in t.page_ids if pid in by_id] for t in page_types
        }
        self.urls: Dict[str, Set[str]] = {}
        for type_id, members in self.members.items():
            urls: Set[str] = set()
            for page in members:
                urls.add(page.url)
                if page.canonical:
                    urls.add(page.canonical)
            self.urls[type_id] = urls
        self.url_to_page: Dict[str, Page] = {}
        for page in pages:
            self.url_to_page.setdefault(page.url, page)
            if page.canonical:
                self.url_to_page.setdefault(page.canonical, page)


def _listing_detail(
    source: PageType, target: PageType, index: _Index
) -> Optional[Relationship]:
    if not extends_pattern(source.url_pattern, target.url_pattern):
        return None
    sources = index.members[source.id]
    targets = index.members[target.id]
    if not sources or not targets:
        return None

    target_urls = index.urls[target.id]
    reached: Set[str] = set()
    linking_pages = 0
    evidence: List[RelationshipEvidence] = []
    for page in sources:
        hits = [link.href for link in page.links if link.href in target_urls]
        if not hits:
            continue
        linking_pages += 1
        for href in hits:
            reached.add(index.url_to_page[href].id)
            if len(evidence) < MAX_EVIDENCE:
                evidence.append(RelationshipEvidence(from_url=page.url, to_url=href))

    if len(reached) <= LISTING_COVERAGE * len(targets):
        return None

    return Relationship(
        type="listing-detail",
        from_type=source.id,
        to_type=target.id,
        description=f"{source.name} pages list {target.name} pages",
        confidence=round(linking_pages / len(sources), 4),
        evidence=evidence,
    )


def _parent_child(parent: PageType, child: PageType, index: _Index) -> Optional[Relationship]:
    parents = index.members[parent.id]
    children = index.members[child.id]
    if not parents or not children:
        return None

    parent_urls = index.urls[parent.id]
    parent_ids: Set[str] = set()
    nested = 0
    evidence: List[RelationshipEvidence] = []
    for page in children:
        crumb = breadcrumb_parent(page)
        if crumb is None or crumb.url not in parent_urls:
            continue
        nested += 1
        parent_ids.add(index.url_to_page[crumb.url].id)
        if len(evidence) < MAX_EVIDENCE:
            evidence.append(RelationshipEvidence(from_url=crumb.url, to_url=page.url))

    if nested == 0 or nested < PARENT_CONSISTENCY * len(children):
        return None

    return Relationship(
        type="parent-child",
        from_type=parent.id,
        to_type=child.id,
        description=f"{child.name} pages sit one breadcrumb level below {parent.name} pages",
        confidence=round(len(parent_ids) / len(parents), 4),
        evidence=evidence,
    )


# Tried in order; the first rule that matches a pair decides it
RULES = (_listing_detail, _parent_child)


def detect_relationships(
    page_types: Sequence[PageType],
    pages: Sequence[Page],
    confidence_threshold: float = 0.6,
) -> List[Relationship]:
    """Infer directed relationships between every ordered pair of page types.

    For each pair the rules are tried in priority order (listing-detail,
    then parent-child).  The first rule that matches decides the pair; if its
    confidence is below *confidence_threshold* the pair is omitted.

    Raises:
        AnalysisError: when there are no page types or no pages.
    """
    if not page_types or not pages:
        raise AnalysisError("Cannot detect relationships without page types and pages")

    index = _Index(page_types, pages)
    relationships: List[Relationship] = []
    for source in page_types:
        for target in page_types:
            if source.id == target.id:
                continue
            for rule in RULES:
                found = rule(source, target, index)
                if found is None:
                    continue
                if found.confidence >= confidence_threshold:
                    relationships.append(found)
                break

    logger.info(
        "Relationships: %d found across %d page types", len(relationships), len(page_types)
    )
    return relationships
