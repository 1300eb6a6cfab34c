"""Reusable content objects: recurring page fragments and structured-data entities.

Two sources feed the detector:

* structural fragments captured at fetch time (cards, teasers, profile
  boxes), grouped by the similarity of their tag/role signature;
* structured data: authors, categories, tags, locations, events and
  products found in JSON-LD, ``<meta>`` tags and breadcrumbs.

Detection walks every page, so :func:`detect_objects` is a coroutine that
yields to the event loop between pages and can be cancelled.
"""

import asyncio
import logging
import re
from collections import Counter, defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from contentmap.models.analysis import DetectedObject, ObjectField, ObjectInstance, PageType
from contentmap.models.page import Page
from contentmap.services.errors import AnalysisError

logger = logging.getLogger(__name__)

MIN_INSTANCES = 2
MIN_PAGES = 2
REQUIRED_FIELD_SHARE = 0.8
LONG_TEXT_CHARS = 200

_DATE_VALUE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_URL_VALUE_RE = re.compile(r"^https?://")
_FIELD_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")

# Field type implied by a fragment slot kind
_SLOT_TYPES = {
    "heading": "string",
    "text": "text",
    "image": "image",
    "link": "url",
    "time": "datetime",
    "price": "string",
    "address": "text",
}


# ---------------------------------------------------------------------------
# Field inference
# ---------------------------------------------------------------------------

def infer_type(value: Any) -> str:
    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    text = str(value)
    if _DATE_VALUE_RE.match(text):
        return "datetime"
    if _URL_VALUE_RE.match(text):
        return "url"
    if len(text) > LONG_TEXT_CHARS:
        return "text"
    return "string"


def field_name(key: str) -> str:
    """``@type`` → ``type``, ``og:title`` → ``og_title``; never starts with a digit."""
    name = _FIELD_NAME_RE.sub("_", key.lstrip("@"))
    if name[:1].isdigit():
        name = "_" + name
    return name or "field"


def _consolidate(types: Counter) -> str:
    if len(types) == 1:
        return next(iter(types))
    if "text" in types and set(types) <= {"text", "string"}:
        return "text"
    if "string" in types:
        return "string"
    return types.most_common(1)[0][0]


def infer_fields(
    records: Sequence[Dict[str, Any]],
    type_hint: Optional[Callable[[str], Optional[str]]] = None,
) -> List[ObjectField]:
    """Suggest fields from instance data; a field is required when present in ≥ 80 % of records."""
    presence: Counter = Counter()
    types: Dict[str, Counter] = defaultdict(Counter)
    order: List[str] = []
    for record in records:
        for key, value in record.items():
            name = field_name(key)
            if name not in presence:
                order.append(name)
            presence[name] += 1
            hinted = type_hint(key) if type_hint else None
            types[name][hinted or infer_type(value)] += 1

    return [
        ObjectField(
            name=name,
            type=_consolidate(types[name]),
            required=presence[name] >= REQUIRED_FIELD_SHARE * len(records),
        )
        for name in order
    ]


def confidence_for(instance_count: int) -> float:
    if instance_count >= 10:
        return 0.95
    if instance_count >= 5:
        return 0.85
    if instance_count >= 2:
        return 0.7
    return 0.5


# ---------------------------------------------------------------------------
# Fragment grouping
# ---------------------------------------------------------------------------

def signature_tokens(signature: str) -> frozenset:
    """``article.card|heading+image+text`` → ``{tag:article, role:card, heading, image, text}``."""
    head, _, body = signature.partition("|")
    tag, _, role = head.partition(".")
    tokens = {f"tag:{tag}"}
    if role:
        tokens.add(f"role:{role}")
    tokens.update(t for t in body.split("+") if t)
    return frozenset(tokens)


def jaccard(a: frozenset, b: frozenset) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


class _Group:
    def __init__(self, signature: str):
        self.signature = signature
        self.tokens = signature_tokens(signature)
        self.signatures: Dict[str, float] = {signature: 1.0}

    def cohesion(self, counts: Counter) -> float:
        total = sum(counts[s] for s in self.signatures)
        return sum(score * counts[s] for s, score in self.signatures.items()) / total


def group_signatures(counts: Counter, similarity: float) -> List[_Group]:
    """Greedily group signatures: each joins the first group whose seed is similar enough."""
    groups: List[_Group] = []
    for signature, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        tokens = signature_tokens(signature)
        for group in groups:
            score = jaccard(group.tokens, tokens)
            if score >= similarity:
                group.signatures[signature] = score
                break
        else:
            groups.append(_Group(signature))
    return groups


def _slot_type(slot: str) -> Optional[str]:
    return _SLOT_TYPES.get(slot.rsplit("_", 1)[0] if slot[-1:].isdigit() else slot)


def _fragment_label(signature: str) -> str:
    head = signature.partition("|")[0]
    tag, _, role = head.partition(".")
    return role or tag


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

InstanceRecord = Tuple[Page, str, Dict[str, Any]]


class ObjectDetector:
    def __init__(self, pages: Sequence[Page], page_types: Sequence[PageType], similarity: float = 0.8):
        self.pages = list(pages)
        self.page_types = list(page_types)
        self.similarity = similarity
        self._type_of: Dict[str, str] = {}
        for page_type in page_types:
            for page_id in page_type.page_ids:
                self._type_of.setdefault(page_id, page_type.id)

    def _type_refs(self, instances: Iterable[ObjectInstance]) -> List[str]:
        present = {self._type_of.get(i.page_id) for i in instances}
        return [t.id for t in self.page_types if t.id in present]

    def _build(
        self,
        object_id: str,
        object_type: str,
        name: str,
        records: List[InstanceRecord],
        rationale: str,
        cohesion: float = 1.0,
        type_hint: Optional[Callable[[str], Optional[str]]] = None,
    ) -> Optional[DetectedObject]:
        if len(records) < MIN_INSTANCES:
            return None
        instances = [
            ObjectInstance(page_id=page.id, page_url=page.url, source=source, data=data)
            for page, source, data in records
        ]
        return DetectedObject(
            id=object_id,
            type=object_type,
            name=name,
            instances=instances,
            confidence=round(min(1.0, confidence_for(len(instances)) * cohesion), 4),
            suggested_fields=infer_fields([i.data for i in instances], type_hint),
            page_type_refs=self._type_refs(instances),
            rationale=rationale,
        )

    # -- structured data ---------------------------------------------------

    @staticmethod
    def _blocks(page: Page) -> List[Dict[str, Any]]:
        return [b for b in page.json_ld or [] if isinstance(b, dict)]

    @staticmethod
    def _types(block: Dict[str, Any]) -> List[str]:
        value = block.get("@type")
        return [t for t in (value if isinstance(value, list) else [value]) if isinstance(t, str)]

    @staticmethod
    def _named(value: Any) -> Optional[Dict[str, Any]]:
        if isinstance(value, str) and value.strip():
            return {"name": value.strip()}
        if isinstance(value, dict) and value.get("name"):
            return dict(value)
        return None

    def _authors(self, page: Page) -> List[InstanceRecord]:
        records: List[InstanceRecord] = []
        for block in self._blocks(page):
            authors = block.get("author")
            for author in authors if isinstance(authors, list) else [authors]:
                data = self._named(author)
                if data:
                    records.append((page, "jsonld", data))
        meta_author = page.meta.get("author") or page.meta.get("article:author")
        if meta_author:
            records.append((page, "meta", {"name": meta_author}))
        return records

    def _categories(self, page: Page) -> List[InstanceRecord]:
        records: List[InstanceRecord] = []
        for block in self._blocks(page):
            value = block.get("articleSection") or block.get("category") or block.get("genre")
            for category in value if isinstance(value, list) else [value]:
                data = self._named(category)
                if data:
                    records.append((page, "jsonld", data))
        for link in page.links:
            if link.context == "breadcrumb" and link.text and link.text.lower() != "home":
                records.append((page, "breadcrumb", {"name": link.text, "url": link.href}))
        section = page.meta.get("article:section")
        if section:
            records.append((page, "meta", {"name": section}))
        return records

    def _tags(self, page: Page) -> List[InstanceRecord]:
        records: List[InstanceRecord] = []
        for block in self._blocks(page):
            keywords = block.get("keywords")
            if isinstance(keywords, str):
                keywords = keywords.split(",")
            for keyword in keywords if isinstance(keywords, list) else []:
                if isinstance(keyword, str) and keyword.strip():
                    records.append((page, "jsonld", {"name": keyword.strip()}))
        for keyword in (page.meta.get("keywords") or "").split(","):
            if keyword.strip():
                records.append((page, "meta", {"name": keyword.strip()}))
        return records

    def _locations(self, page: Page) -> List[InstanceRecord]:
        records: List[InstanceRecord] = []
        for block in self._blocks(page):
            types = self._types(block)
            if "Place" in types or "LocalBusiness" in types or block.get("address"):
                address = block.get("address") or block
                data = dict(address) if isinstance(address, dict) else {"address": address}
                records.append((page, "jsonld", data))
        return records

    def _typed(self, type_name: str) -> Callable[[Page], List[InstanceRecord]]:
        def collect(page: Page) -> List[InstanceRecord]:
            return [
                (page, "jsonld", dict(block))
                for block in self._blocks(page)
                if type_name in self._types(block)
            ]

        return collect

    # -- fragments ---------------------------------------------------------

    def _fragment_objects(self, occurrences: List[Tuple[Page, str, Dict[str, str]]]) -> List[DetectedObject]:
        counts: Counter = Counter(signature for _, signature, _ in occurrences)
        groups = group_signatures(counts, self.similarity)
        group_of = {s: g for g in groups for s in g.signatures}

        members: Dict[str, List[InstanceRecord]] = defaultdict(list)
        for page, signature, slots in occurrences:
            members[group_of[signature].signature].append((page, "fragment", dict(slots)))

        objects: List[DetectedObject] = []
        used_ids: Counter = Counter()
        for group in groups:
            records = members[group.signature]
            if len({page.id for page, _, _ in records}) < MIN_PAGES:
                continue
            label = _fragment_label(group.signature)
            used_ids[label] += 1
            suffix = f"-{used_ids[label]}" if used_ids[label] > 1 else ""
            found = self._build(
                object_id=f"fragment-{label}{suffix}",
                object_type=label,
                name=label.replace("-", " "),
                records=records,
                rationale=(
                    f"Structural fragment {group.signature} recurs {len(records)} times "
                    f"on {len({p.id for p, _, _ in records})} pages"
                ),
                cohesion=group.cohesion(counts),
                type_hint=_slot_type,
            )
            if found:
                objects.append(found)
        return objects

    async def detect(self) -> List[DetectedObject]:
        collectors: List[Tuple[str, Callable[[Page], List[InstanceRecord]]]] = [
            ("author", self._authors),
            ("category", self._categories),
            ("tag", self._tags),
            ("location", self._locations),
            ("event", self._typed("Event")),
            ("product", self._typed("Product")),
        ]
        structured: Dict[str, List[InstanceRecord]] = defaultdict(list)
        occurrences: List[Tuple[Page, str, Dict[str, str]]] = []

        for page in self.pages:
            for name, collect in collectors:
                structured[name].extend(collect(page))
            for fragment in page.fragments:
                occurrences.append((page, fragment.signature, fragment.slots))
            # Long runs stay responsive and cancellable
            await asyncio.sleep(0)

        objects: List[DetectedObject] = []
        for name, _ in collectors:
            records = structured[name]
            unique = {str(data.get("name", data)) for _, _, data in records}
            found = self._build(
                object_id=name,
                object_type=name,
                name=name,
                records=records,
                rationale=(
                    f"Found {len(records)} {name} instances ({len(unique)} unique) "
                    "in structured data across the site"
                ),
            )
            if found:
                objects.append(found)

        objects.extend(self._fragment_objects(occurrences))
        return objects


async def detect_objects(
    pages: Sequence[Page],
    page_types: Sequence[PageType],
    *,
    similarity: float = 0.8,
) -> List[DetectedObject]:
    """Detect reusable content objects across *pages*.

    Args:
        pages: Successfully fetched pages.
        page_types: Clustering output, used for ``page_type_refs``.
        similarity: Minimum signature Jaccard similarity for two fragment
            signatures to be grouped into one object.

    Raises:
        AnalysisError: when *pages* is empty.
    """
    if not pages:
        raise AnalysisError("Cannot detect objects on zero pages")
    objects = await ObjectDetector(pages, page_types, similarity).detect()
    logger.info("Objects: %d detected across %d pages", len(objects), len(pages))
    return objects
