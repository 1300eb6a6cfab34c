from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from contentmap.models.base import CamelModel

RelationshipType = Literal["listing-detail", "parent-child"]
InstanceSource = Literal["fragment", "jsonld", "meta", "breadcrumb"]


class NavItem(CamelModel):
    label: str
    target_pattern: str
    frequency: int = 0


class GraphNode(CamelModel):
    id: str
    url: str
    depth: int = Field(description="Number of path segments in the URL.")


class GraphEdge(CamelModel):
    from_id: str = Field(alias="from")
    to_id: str = Field(alias="to")
    context: str
    confidence: float = Field(ge=0.0, le=1.0)


class SiteGraph(CamelModel):
    """Stored pages and the links between them."""

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class Navigation(CamelModel):
    primary_nav: List[NavItem] = Field(default_factory=list)
    footer: List[NavItem] = Field(default_factory=list)
    breadcrumbs: List[NavItem] = Field(default_factory=list)
    site_graph: SiteGraph = Field(default_factory=SiteGraph)


class PageFeatures(CamelModel):
    has_date: bool = False
    has_author: bool = False
    has_price: bool = False
    has_form: bool = False
    has_gallery: bool = False
    has_breadcrumbs: bool = False
    has_related_content: bool = False
    rich_content: bool = False


class PageType(CamelModel):
    id: str
    name: str
    page_count: int
    confidence: float = Field(ge=0.0, le=1.0)
    url_pattern: Optional[str] = None
    examples: List[str] = Field(default_factory=list)
    features: PageFeatures = Field(default_factory=PageFeatures)
    page_ids: List[str] = Field(default_factory=list)
    json_ld_types: List[str] = Field(default_factory=list)
    dom_signature: str = ""
    rationale: str = ""


class RelationshipEvidence(CamelModel):
    from_url: str
    to_url: str


class Relationship(CamelModel):
    type: RelationshipType
    from_type: str = Field(alias="from")
    to_type: str = Field(alias="to")
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: List[RelationshipEvidence] = Field(default_factory=list)


class ObjectField(CamelModel):
    name: str
    type: str = "string"
    required: bool = False


class ObjectInstance(CamelModel):
    page_id: str
    page_url: str
    source: InstanceSource
    data: Dict[str, Any] = Field(default_factory=dict)


class DetectedObject(CamelModel):
    id: str
    type: str
    name: str
    instances: List[ObjectInstance] = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_fields: List[ObjectField] = Field(default_factory=list)
    page_type_refs: List[str] = Field(default_factory=list)
    rationale: str = ""


class AnalysisResult(CamelModel):
    """The four artifacts of one analysis run."""

    navigation: Navigation
    page_types: List[PageType]
    relationships: List[Relationship]
    objects: List[DetectedObject]
    pages_analyzed: int
