from typing import Any, List, Literal, Mapping, Optional

from pydantic import ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from contentmap.models.base import CamelModel
from contentmap.services.errors import ConfigError

RenderMode = Literal["http", "browser", "auto"]
ScreenshotMode = Literal["none", "aboveFold", "fullPage"]


class _PolicyModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )

    @classmethod
    def load(cls, data: Optional[Mapping[str, Any]] = None):
        """Validate *data* and return the model, raising :class:`ConfigError` on bad input."""
        try:
            return cls.model_validate(dict(data or {}))
        except ValidationError as exc:
            raise ConfigError(f"Invalid {cls.__name__}: {exc}") from exc


class CrawlConfig(_PolicyModel):
    """Immutable per-run crawl policy."""

    max_pages: int = Field(
        default=1000,
        ge=1,
        description="Stop dispatching once this many pages were fetched successfully.",
    )
    max_depth: int = Field(
        default=10,
        ge=0,
        description="Maximum link depth from the base URL (the base URL is depth 0).",
    )
    include: List[str] = Field(
        default_factory=list,
        description="If non-empty, only URLs containing one of these substrings are crawled.",
    )
    exclude: List[str] = Field(
        default_factory=list,
        description="URLs containing any of these substrings are never crawled.",
    )
    exclude_paths: List[str] = Field(
        default_factory=list,
        description="Glob patterns matched against the URL path, e.g. '/admin/*' or '/api/**'.",
        examples=[["/admin/*", "/api/**"]],
    )
    follow_subdomains: bool = False
    allowed_subdomains: List[str] = Field(
        default_factory=list,
        description="Subdomains followed when follow_subdomains is set (empty = all).",
    )
    render: RenderMode = "http"
    """Rendering strategy.

    ``"http"``
        Plain HTTP fetch only.
    ``"browser"``
        Always render with the injected browser renderer.
    ``"auto"``
        HTTP first; fall back to the renderer when the page looks like an
        unrendered JavaScript shell.
    """
    screenshot: ScreenshotMode = "none"
    throttle: int = Field(
        default=100,
        ge=0,
        description="Minimum spacing in milliseconds between fetch starts, across all workers.",
    )
    concurrency: int = Field(default=5, ge=1, le=32)
    respect_robots: bool = True

    @model_validator(mode="after")
    def _screenshots_need_renderer(self) -> "CrawlConfig":
        if self.screenshot != "none" and self.render == "http":
            raise ValueError("screenshot capture requires render='browser' or 'auto'")
        return self


class AnalyzeConfig(_PolicyModel):
    """Tunables for the content-model inference phases."""

    clustering_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_clusters: int = Field(default=20, ge=1)
    min_cluster_size: int = Field(default=2, ge=1)
    relationship_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    nav_frequency_threshold: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        description="Fraction of pages a link must appear on to count as navigation.",
    )
