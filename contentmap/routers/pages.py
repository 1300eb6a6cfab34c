from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from contentmap.dependencies import existing_store
from contentmap.models.api import PageSummary
from contentmap.models.page import Page
from contentmap.services.page_store import ARTIFACT_NAMES, PageStore

router = APIRouter()


def _summary(page: Page) -> PageSummary:
    return PageSummary(
        id=page.id,
        url=page.url,
        status=page.status,
        title=page.title,
        crawled_at=page.crawled_at,
        error=page.error,
    )


@router.get(
    "/pages",
    response_model=List[PageSummary],
    response_model_by_alias=True,
    summary="List stored pages",
)
def list_pages(
    status: Optional[int] = Query(default=None, description="Only pages with this HTTP status (0 = fetch failed)."),
    store: PageStore = Depends(existing_store),
) -> List[PageSummary]:
    pages = store.all() if status is None else store.by_status(status)
    return [_summary(p) for p in pages]


@router.get(
    "/pages/lookup",
    response_model=Page,
    response_model_by_alias=True,
    summary="Find a stored page by URL",
)
def lookup_page(
    url: str = Query(..., description="Any spelling of the page URL; it is normalized first."),
    store: PageStore = Depends(existing_store),
) -> Page:
    page = store.get_by_url(url)
    if page is None:
        raise HTTPException(status_code=404, detail=f"No stored page for {url}")
    return page


@router.get(
    "/pages/{page_id}",
    response_model=Page,
    response_model_by_alias=True,
    summary="Fetch a stored page by id",
)
def get_page(page_id: str, store: PageStore = Depends(existing_store)) -> Page:
    page = store.get(page_id)
    if page is None:
        raise HTTPException(status_code=404, detail=f"No stored page {page_id}")
    return page


@router.get(
    "/artifacts/{name}",
    summary="Fetch an analysis artifact",
    description=f"One of: {', '.join(ARTIFACT_NAMES)}.",
)
def get_artifact(name: str, store: PageStore = Depends(existing_store)) -> Any:
    if name not in ARTIFACT_NAMES:
        raise HTTPException(status_code=404, detail=f"Unknown artifact {name!r}")
    data = store.load_artifact(name)
    if data is None:
        raise HTTPException(status_code=404, detail=f"Artifact {name!r} not computed yet")
    return data
