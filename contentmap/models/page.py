from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from contentmap.models.base import CamelModel

LinkContext = Literal["header", "nav", "footer", "main", "aside", "breadcrumb"]


class Heading(CamelModel):
    level: int = Field(ge=1, le=6)
    text: str


class Link(CamelModel):
    href: str
    text: str = ""
    context: LinkContext = "main"
    rel: Optional[str] = None


class Fragment(CamelModel):
    """A structural sub-block of a page (card, teaser, profile box …).

    ``signature`` encodes the tag/role pattern of the block, not its text, so
    two product cards with different copy share a signature.
    """

    signature: str
    tag: str
    slots: Dict[str, str] = Field(default_factory=dict)


class PageSnapshot(CamelModel):
    """Everything the fetcher learns about one URL."""

    url: str
    canonical: Optional[str] = None
    status: int
    redirect_chain: Optional[List[str]] = None
    title: str = ""
    meta: Dict[str, str] = Field(default_factory=dict)
    headings: List[Heading] = Field(default_factory=list)
    lang: Optional[str] = None
    json_ld: Optional[List[Any]] = None
    links: List[Link] = Field(default_factory=list)
    main_content: Optional[str] = None
    content_hash: str = ""
    screenshot: Optional[str] = None
    fragments: List[Fragment] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


class Page(PageSnapshot):
    """One crawled URL as persisted in the page store."""

    id: str
    crawled_at: datetime
    depth: int = Field(default=0, ge=0, description="Link distance from the base URL when crawled.")
