"""Content-model inference: navigation → page types → relationships → objects."""

import logging
from datetime import datetime, timezone
from typing import Optional

from contentmap.models.analysis import AnalysisResult
from contentmap.models.config import AnalyzeConfig
from contentmap.services.clustering import cluster
from contentmap.services.deduplicator import dedupe_pages
from contentmap.services.errors import AnalysisError
from contentmap.services.navigation import extract_navigation
from contentmap.services.objects import detect_objects
from contentmap.services.page_store import PageStore
from contentmap.services.relationships import detect_relationships

logger = logging.getLogger(__name__)


async def analyze(store: PageStore, config: Optional[AnalyzeConfig] = None) -> AnalysisResult:
    """Run every analysis phase over the full page store and save the four artifacts.

    Pages are loaded once; only successful, de-duplicated pages are
    analysed.  Previous artifacts are overwritten.

    Raises:
        AnalysisError: when the store holds no (successful) pages.
    """
    config = config or AnalyzeConfig()

    stored = store.all()
    if not stored:
        raise AnalysisError("The page store is empty; run a crawl first")
    pages = dedupe_pages(stored)
    if not pages:
        raise AnalysisError("The page store holds no successfully fetched pages")
    logger.info("Analyzer: %d of %d stored pages after de-duplication", len(pages), len(stored))

    navigation = extract_navigation(pages, config.nav_frequency_threshold)
    page_types = cluster(
        pages,
        threshold=config.clustering_threshold,
        max_clusters=config.max_clusters,
        min_cluster_size=config.min_cluster_size,
    )
    relationships = detect_relationships(
        page_types, pages, config.relationship_confidence_threshold
    )
    objects = await detect_objects(pages, page_types)

    result = AnalysisResult(
        navigation=navigation,
        page_types=page_types,
        relationships=relationships,
        objects=objects,
        pages_analyzed=len(pages),
    )

    store.save_artifact("navigation", navigation.to_json_dict())
    store.save_artifact("pageTypes", [t.to_json_dict() for t in page_types])
    store.save_artifact("relationships", [r.to_json_dict() for r in relationships])
    store.save_artifact("objects", [o.to_json_dict() for o in objects])
    store.set_metadata(
        "lastAnalysis",
        {
            "finishedAt": datetime.now(timezone.utc).isoformat(),
            "pagesAnalyzed": len(pages),
            "config": config.to_json_dict(),
        },
    )
    return result
