import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from contentmap.dependencies import existing_store
from contentmap.models.analysis import AnalysisResult
from contentmap.models.config import AnalyzeConfig
from contentmap.services.analyzer import analyze
from contentmap.services.errors import AnalysisError, ConfigError
from contentmap.services.page_store import PageStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/analyze",
    response_model=AnalysisResult,
    response_model_by_alias=True,
    summary="Infer the content model from the stored pages",
    description=(
        "Recomputes navigation, page types, relationships and detected objects "
        "from every stored page and overwrites the previous artifacts.  The "
        "optional body holds AnalyzeConfig options."
    ),
)
async def analyze_endpoint(
    body: Optional[Dict[str, Any]] = Body(default=None, examples=[{"clusteringThreshold": 0.7}]),
    store: PageStore = Depends(existing_store),
) -> AnalysisResult:
    try:
        config = AnalyzeConfig.load(body)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        return await analyze(store, config)
    except AnalysisError as exc:
        logger.warning("Analysis failed – %s", exc)
        raise HTTPException(status_code=422, detail=str(exc))
