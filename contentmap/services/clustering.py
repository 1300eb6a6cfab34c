"""Page-type clustering: greedy average-linkage agglomeration over feature similarity."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from contentmap.models.analysis import PageFeatures, PageType
from contentmap.models.page import Page
from contentmap.services.errors import AnalysisError
from contentmap.services.features import (
    FeatureExtractor,
    aggregate_flags,
    default_extractors,
    dom_signature,
    is_placeholder,
    json_ld_types,
    page_flags,
    pattern_segments,
    similarity,
    url_pattern,
    vectorize,
)

logger = logging.getLogger(__name__)

OTHER_TYPE_ID = "other"
MAX_EXAMPLES = 5

# Segments that say nothing about what a page is
_GENERIC_SEGMENTS = {"index", "home"}


class _Agglomerator:
    """Average-linkage merging with a cached best partner per cluster.

    ``sums[a][b]`` holds the total pairwise page similarity between clusters
    *a* and *b*; the linkage is that sum divided by ``|a| * |b|``.
    """

    def __init__(self, matrix: List[List[float]]):
        n = len(matrix)
        self.members: Dict[int, List[int]] = {i: [i] for i in range(n)}
        self.sums: Dict[int, Dict[int, float]] = {
            i: {j: matrix[i][j] for j in range(n) if j != i} for i in range(n)
        }
        self.best: Dict[int, Tuple[float, int]] = {}
        for i in range(n):
            self._refresh(i)

    def __len__(self) -> int:
        return len(self.members)

    def linkage(self, a: int, b: int) -> float:
        return self.sums[a][b] / (len(self.members[a]) * len(self.members[b]))

    def _refresh(self, a: int) -> None:
        best: Optional[Tuple[float, int]] = None
        for b in self.sums[a]:
            score = self.linkage(a, b)
            if best is None or score > best[0] or (score == best[0] and b < best[1]):
                best = (score, b)
        if best is None:
            self.best.pop(a, None)
        else:
            self.best[a] = best

    def best_pair(self) -> Optional[Tuple[float, int, int]]:
        if not self.best:
            return None
        a, (score, b) = max(
            self.best.items(), key=lambda item: (item[1][0], -min(item[0], item[1][1]))
        )
        return score, min(a, b), max(a, b)

    def merge(self, a: int, b: int) -> None:
        """Fold cluster *b* into cluster *a*."""
        self.members[a].extend(self.members.pop(b))
        del self.sums[a][b]
        for c, total in self.sums.pop(b).items():
            if c == a:
                continue
            self.sums[a][c] += total
            self.sums[c][a] += total
            del self.sums[c][b]
        self.best.pop(b, None)

        self._refresh(a)
        for c in self.sums[a]:
            partner = self.best.get(c, (0.0, -1))[1]
            if partner in (a, b):
                self._refresh(c)
            else:
                score = self.linkage(c, a)
                if score > self.best[c][0]:
                    self.best[c] = (score, a)

    def clusters(self) -> List[List[int]]:
        return [sorted(m) for m in self.members.values()]


def _mean_pairwise(members: Sequence[int], matrix: List[List[float]]) -> float:
    if len(members) < 2:
        return 1.0
    total = 0.0
    pairs = 0
    for i, a in enumerate(members):
        for b in members[i + 1 :]:
            total += matrix[a][b]
            pairs += 1
    return total / pairs


def common_pattern(patterns: Sequence[str]) -> Optional[str]:
    """Most specific pattern covering every member pattern, or ``None``.

    Equal-length patterns keep agreeing segments and replace the rest with
    ``*``; patterns of different lengths share their common prefix plus ``**``.
    """
    unique = list(dict.fromkeys(patterns))
    if not unique:
        return None
    if len(unique) == 1:
        return unique[0]

    split = [pattern_segments(p) for p in unique]
    if len({len(s) for s in split}) == 1:
        merged = [col[0] if len(set(col)) == 1 else "*" for col in zip(*split)]
        return "/" + "/".join(merged)

    prefix: List[str] = []
    for col in zip(*split):
        if len(set(col)) != 1:
            break
        prefix.append(col[0])
    if not prefix:
        return None
    return "/" + "/".join(prefix) + "/**"


def infer_name(pattern: Optional[str], types: Sequence[str], features: PageFeatures) -> str:
    if types:
        return types[0].lower()
    if pattern == "/":
        return "home"
    literal = [s for s in pattern_segments(pattern) if not is_placeholder(s)]
    if literal and literal[-1] not in _GENERIC_SEGMENTS:
        return literal[-1]
    if features.has_author and features.has_date:
        return "article"
    if features.has_price:
        return "product"
    if features.has_form:
        return "contact"
    return "page"


def _rationale(
    pattern: Optional[str], count: int, types: Sequence[str], features: PageFeatures
) -> str:
    if pattern:
        reasons = [f'{count} pages match the URL pattern "{pattern}"']
    else:
        reasons = [f"{count} pages share no common URL pattern"]
    if types:
        reasons.append(f"JSON-LD types: {', '.join(types)}")
    signals = [
        label
        for flag, label in (
            (features.has_date, "dates"),
            (features.has_author, "authors"),
            (features.has_price, "pricing"),
            (features.rich_content, "rich content"),
        )
        if flag
    ]
    if signals:
        reasons.append(f"Common features: {', '.join(signals)}")
    return ". ".join(reasons)


def _build_type(type_id: str, members: List[Page], confidence: float, name: Optional[str] = None) -> PageType:
    pattern = common_pattern([url_pattern(p.url) for p in members])
    features = aggregate_flags([page_flags(p) for p in members])
    types: List[str] = []
    for page in members:
        for t in json_ld_types(page):
            if t not in types:
                types.append(t)

    return PageType(
        id=type_id,
        name=name or infer_name(pattern, types, features),
        page_count=len(members),
        confidence=round(min(1.0, max(0.0, confidence)), 4),
        url_pattern=pattern,
        examples=[p.url for p in members[:MAX_EXAMPLES]],
        features=features,
        page_ids=[p.id for p in members],
        json_ld_types=types,
        dom_signature=dom_signature(members),
        rationale=_rationale(pattern, len(members), types, features),
    )


def cluster(
    pages: Sequence[Page],
    threshold: float = 0.7,
    max_clusters: int = 20,
    min_cluster_size: int = 2,
    extractors: Optional[Sequence[FeatureExtractor]] = None,
) -> List[PageType]:
    """Group *pages* into page types.

    Starting from singletons, the two clusters with the highest average
    inter-member similarity are merged while that similarity is at least
    *threshold*; merging continues regardless of threshold while more than
    *max_clusters* clusters remain.  Clusters smaller than
    *min_cluster_size* are pooled into a catch-all ``other`` type, which
    also absorbs the smallest clusters if the total would exceed
    *max_clusters*.

    Returns:
        Page types ordered by descending page count, ``other`` last.  Every
        page belongs to exactly one type.

    Raises:
        AnalysisError: when *pages* is empty.
    """
    if not pages:
        raise AnalysisError("Cannot cluster zero pages")
    if max_clusters < 1:
        raise AnalysisError("max_clusters must be at least 1")

    extractors = list(extractors or default_extractors())
    vectors = [vectorize(p, extractors) for p in pages]
    n = len(pages)
    matrix = [[1.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            matrix[i][j] = matrix[j][i] = similarity(vectors[i], vectors[j], extractors)

    agglo = _Agglomerator(matrix)
    while len(agglo) > 1:
        score, a, b = agglo.best_pair()
        if score < threshold and len(agglo) <= max_clusters:
            break
        agglo.merge(a, b)

    clusters = sorted(agglo.clusters(), key=lambda m: (-len(m), m[0]))
    kept = [m for m in clusters if len(m) >= min_cluster_size]
    leftover = [i for m in clusters if len(m) < min_cluster_size for i in m]

    if len(kept) + (1 if leftover else 0) > max_clusters:
        room = max_clusters - 1
        leftover.extend(i for m in kept[room:] for i in m)
        kept = kept[:room]

    page_types = [
        _build_type(f"type-{k}", [pages[i] for i in members], _mean_pairwise(members, matrix))
        for k, members in enumerate(kept, start=1)
    ]
    if leftover:
        leftover.sort()
        page_types.append(
            _build_type(
                OTHER_TYPE_ID,
                [pages[i] for i in leftover],
                _mean_pairwise(leftover, matrix),
                name="other",
            )
        )

    logger.info(
        "Clustering: %d pages → %d page types (%d in other)", n, len(page_types), len(leftover)
    )
    return page_types
