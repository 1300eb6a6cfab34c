import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from contentmap.dependencies import get_db_path, open_store
from contentmap.models.api import CrawlRequest, CrawlResponse
from contentmap.models.config import CrawlConfig
from contentmap.services.browser_fetcher import PlaywrightRenderer
from contentmap.services.crawler import Crawler, CrawlStats
from contentmap.services.errors import ConfigError

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


async def _run(url: str, config: CrawlConfig, path: Path, resume: bool) -> CrawlStats:
    store = open_store(path, must_exist=resume)
    try:
        if config.render == "http":
            return await Crawler(url, config, store).run(resume=resume)
        async with PlaywrightRenderer() as renderer:
            return await Crawler(url, config, store, renderer=renderer).run(resume=resume)
    finally:
        store.close()


@router.post(
    "/crawl",
    response_model=CrawlResponse,
    response_model_by_alias=True,
    summary="Crawl a site into the page store",
    description=(
        "Starting from *url*, discovers and fetches every in-scope page allowed "
        "by *config* and stores it.  A fresh crawl clears the store first; with "
        "`resume` the previous crawl is continued and stored pages are never "
        "fetched again."
    ),
)
@limiter.limit("5/minute")
async def crawl_endpoint(
    request: Request, body: CrawlRequest, db_path: Path = Depends(get_db_path)
) -> CrawlResponse:
    url = str(body.url)
    try:
        config = CrawlConfig.load(body.config)
    except ConfigError as exc:
        logger.warning("Rejected crawl config for %s – %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))

    logger.info("Crawl request received for %s (resume=%s)", url, body.resume)
    try:
        stats = await _run(url, config, db_path, body.resume)
    except ConfigError as exc:
        logger.warning("Invalid crawl request for %s – %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))

    return CrawlResponse(**stats._asdict())
