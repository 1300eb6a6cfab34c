from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import Field, HttpUrl

from contentmap.models.base import CamelModel


class CrawlRequest(CamelModel):
    url: HttpUrl
    config: Optional[Dict[str, Any]] = Field(
        default=None,
        description="CrawlConfig options (camelCase or snake_case); unset options take their defaults.",
        examples=[{"maxPages": 50, "excludePaths": ["/admin/*"]}],
    )
    resume: bool = Field(
        default=False,
        description="Continue the previous crawl instead of clearing the page store.",
    )


class CrawlResponse(CamelModel):
    base_url: str
    fetched: int
    succeeded: int
    failed: int
    excluded: int
    stored_pages: int
    successful_pages: int
    limit_reached: bool
    resumed: bool


class PageSummary(CamelModel):
    id: str
    url: str
    status: int
    title: str = ""
    crawled_at: datetime
    error: Optional[str] = None
