"""Pydantic schemas for the API and for data flowing through the pipeline.

Defines:
- Search projections: HybridSearchResult, VisualAssetSearchResult, DocumentMetric, TaxonomyTerm.
- RetrievedContext: the bounded evidence bundle handed to the orchestrator.
- LayoutComponent / LayoutPlan: the layout contract produced by the orchestrator.
- OrchestratorOutput: layout plan plus explanation, follow-ups and contact flag.
- RenderInstruction: assembler output consumed by the rendering layer.
- ChatRequest / ChatResponse: the public /api/chat contract (camelCase on the wire).
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DocumentType = Literal["case_study", "article"]


class TaxonomyTerm(BaseModel):
    """A capability, industry or topic entry."""
    id: str
    name: str
    slug: str
    description: Optional[str] = None


class HybridSearchResult(BaseModel):
    """A ranked chunk joined with its parent document fields.

    Attributes:
        similarity_score: Vector cosine similarity (1 - distance).
        keyword_score: Trigram text similarity.
        combined_score: semantic_weight * similarity + (1 - semantic_weight) * keyword,
            possibly boosted by the retriever for taxonomy-filtered matches.
        is_detail: True when admitted as a document's secondary "detail" chunk.
    """
    chunk_id: str
    document_id: str
    content: str
    chunk_type: str = "text"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    document_title: str
    document_type: DocumentType = "case_study"
    slug: str
    client_name: Optional[str] = None
    author: Optional[str] = None
    vimeo_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    similarity_score: float = 0.0
    keyword_score: float = 0.0
    combined_score: float = 0.0
    is_detail: bool = False


class VisualAssetSearchResult(BaseModel):
    """A visual asset matched by description similarity, with a short-lived URL."""
    asset_id: str
    document_id: str
    storage_path: str
    bucket_name: str
    asset_type: str
    alt_text: Optional[str] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    similarity_score: float = 0.0
    signed_url: Optional[str] = None


class DocumentMetric(BaseModel):
    """A labeled statistic attached to a document."""
    id: str
    document_id: str
    label: str
    value: str
    context: Optional[str] = None
    display_order: int = 0


class RetrievedContext(BaseModel):
    """Evidence bundle for one query; built fresh per request."""
    chunks: List[HybridSearchResult] = Field(default_factory=list)
    visual_assets: List[VisualAssetSearchResult] = Field(default_factory=list)
    related_metrics: List[DocumentMetric] = Field(default_factory=list)
    capabilities: List[TaxonomyTerm] = Field(default_factory=list)
    industries: List[TaxonomyTerm] = Field(default_factory=list)
    topics: List[TaxonomyTerm] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.chunks and not self.visual_assets


class ApiModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase in JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LayoutComponent(ApiModel):
    """One layout item as emitted by the model; validated later by the assembler."""
    component: str
    props: Dict[str, Any] = Field(default_factory=dict)


class LayoutPlan(ApiModel):
    """Ordered list of layout items: {"layout": [{"component", "props"}, ...]}."""
    layout: List[LayoutComponent] = Field(default_factory=list)


class OrchestratorOutput(ApiModel):
    """Result of layout orchestration.

    Attributes:
        layout_plan: Extracted layout plan (possibly empty).
        explanation: Short natural-language rationale, or an apology on failure.
        suggested_follow_ups: Optional follow-up questions proposed by the model.
        contact_cta: True when the UI should surface the human-contact fallback.
    """
    layout_plan: LayoutPlan = Field(default_factory=LayoutPlan)
    explanation: str
    suggested_follow_ups: Optional[List[str]] = None
    contact_cta: bool = Field(default=False, alias="contactCTA")


class RenderInstruction(ApiModel):
    """A renderable unit produced by the layout assembler.

    kind:
        - component: a validated component with its props
        - group: consecutive CaseStudyTeasers presented as one grid (see items/columns)
        - placeholder: an unknown or invalid item rendered inert (see reason)
        - empty: the plan had no items
    """
    kind: Literal["component", "group", "placeholder", "empty"]
    component: Optional[str] = None
    props: Dict[str, Any] = Field(default_factory=dict)
    items: List["RenderInstruction"] = Field(default_factory=list)
    columns: Optional[int] = None
    spacing: str = "none"
    reason: Optional[str] = None


RenderInstruction.model_rebuild()


class ChatMessage(ApiModel):
    """A prior conversation turn."""
    role: Literal["user", "assistant"]
    content: str


class ChatFilters(ApiModel):
    """Explicit taxonomy filters supplied by the caller."""
    capabilities: Optional[List[str]] = None
    industries: Optional[List[str]] = None


class ChatRequest(ApiModel):
    """Request body for /api/chat.

    The query is validated by the handler (length bounds) so that failures surface
    as 400 {"error": ...} like the rest of the API.
    """
    query: Optional[str] = None
    filters: Optional[ChatFilters] = None
    conversation_history: Optional[List[ChatMessage]] = None


class ChatResponse(OrchestratorOutput):
    """Response body for /api/chat.

    Attributes:
        render_plan: Assembler output for the rendering layer.
        latency_ms: End-to-end latency for the request in milliseconds.
        used_cache: Whether the orchestrator output was served from cache.
    """
    render_plan: List[RenderInstruction] = Field(default_factory=list)
    latency_ms: int = 0
    used_cache: bool = False
