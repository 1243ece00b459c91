"""Pydantic models for the gap pipeline, reconciliation and API request/response."""

from typing import Literal

from pydantic import BaseModel, Field

GapStatus = Literal["identified", "in_progress", "addressed", "dismissed"]
Priority = Literal["low", "medium", "high"]
ContentType = Literal["document", "qa", "both"]


class Actor(BaseModel):
    """Who a Knowledge Store write is performed on behalf of."""

    name: str
    role: str = "user"
    is_system: bool = False


SYSTEM_ACTOR = Actor(name="system", role="system", is_system=True)


class InteractionEvent(BaseModel):
    """One logged question/answer exchange."""

    id: int | None = None
    user_id: str | None = None
    input: str = ""
    output: str = ""
    confidence: Literal["high", "medium", "low"] | None = None
    escalation_target: str | None = None
    context_json: str | None = None
    created_at: str | None = None

    @property
    def is_escalated(self) -> bool:
        return bool(self.escalation_target)


class QueryCluster(BaseModel):
    """Problematic events sharing a coarse signature. Computed per run, never persisted."""

    signature: str
    events: list[InteractionEvent] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metadata_errors: int = 0

    @property
    def frequency(self) -> int:
        return len(self.events)

    @property
    def low_confidence_count(self) -> int:
        return sum(1 for e in self.events if e.confidence == "low")

    @property
    def escalation_count(self) -> int:
        return sum(1 for e in self.events if e.is_escalated)

    @property
    def event_ids(self) -> list[int]:
        return [e.id for e in self.events if e.id is not None]

    def example_queries(self, limit: int) -> list[str]:
        return [e.input for e in self.events[:limit]]


class GapCandidate(BaseModel):
    """A synthesized gap description ready for the merge engine."""

    topic: str
    description: str = ""
    suggested_tags: list[str] = Field(default_factory=list)
    content_type: ContentType = "document"
    frequency: int = 1
    example_queries: list[str] = Field(default_factory=list)
    event_ids: list[int] = Field(default_factory=list)


class ContentGap(BaseModel):
    """A persisted, recurring under-served topic."""

    id: int | None = None
    topic: str
    description: str = ""
    suggested_tags: list[str] = Field(default_factory=list)
    frequency: int = Field(default=1, ge=1)
    query_examples: list[str] = Field(default_factory=list, max_length=10)
    priority: Priority = "low"
    status: GapStatus = "identified"
    suggested_content_type: ContentType = "document"
    confidence_scores: list[str] = Field(default_factory=list)
    dismissed_reason: str = ""
    assigned_to: str = ""
    updated_by: str = ""
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None


class KnowledgeItem(BaseModel):
    """A Document or CuratedQA flattened into one searchable shape."""

    type: Literal["document", "qa"]
    id: int
    title: str
    content: str = ""
    summary: str = ""
    tags: list[str] = Field(default_factory=list)
    owner_name: str = ""
    created_at: str | None = None
    updated_at: str | None = None


class RankedResult(KnowledgeItem):
    """A knowledge item with the Reasoning Service's clamped score and explanation."""

    confidence: float = Field(ge=0.0, le=1.0)
    highlight: str = ""
    reason: str = ""
    category: str = ""


class Suggestion(BaseModel):
    """A proactive suggestion, optionally linked to a knowledge item."""

    type: str = "exploration"
    title: str
    description: str = ""
    action: str = ""
    relevance_score: float = Field(ge=0.0, le=1.0)
    related_document_id: int | None = None
    related_qa_id: int | None = None
    item: KnowledgeItem | None = None


class DetectionRun(BaseModel):
    """Bookkeeping for a gap detection or batch analysis run."""

    id: int | None = None
    mode: Literal["detect", "analyze"] = "detect"
    status: Literal["running", "completed", "partial", "failed"] = "running"
    analyzed: int = 0
    problematic: int = 0
    patterns_found: int = 0
    gaps_created: int = 0
    gaps_updated: int = 0
    failed_clusters: int = 0
    started_at: str | None = None
    completed_at: str | None = None


class DetectionWindow(BaseModel):
    """Bounds of the interaction window a detection run looks at."""

    limit: int = Field(default=500, ge=1)
    lookback_days: int = Field(default=30, ge=1)
    max_clusters: int = Field(default=10, ge=1)


class UserContext(BaseModel):
    """Caller-supplied context for recommendations and proactive suggestions."""

    user_id: str
    role: str = "user"
    recent_queries: list[str] = Field(default_factory=list)
    viewed_titles: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
