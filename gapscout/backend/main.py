"""FastAPI application with REST endpoints for GapScout."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import database as db
import gaps
import search as kb_search
from config import settings
from demo_data import seed_demo_data
from errors import ConflictError, InputError
from models import Actor, DetectionWindow, GapStatus, SYSTEM_ACTOR, UserContext

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# --------------- App Lifecycle ---------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await db.init_db()
    if settings.SEED_DEMO_DATA:
        counts = await seed_demo_data()
        if any(counts.values()):
            logger.info(f"Demo data seeded: {counts}")
    logger.info("GapScout backend started")
    yield
    logger.info("GapScout backend shutting down")


app = FastAPI(
    title="GapScout",
    description="Find knowledge base gaps from poorly answered questions, and search what already exists",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --------------- Request Models ---------------

class DetectRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1)
    lookback_days: int | None = Field(default=None, ge=1)
    max_clusters: int | None = Field(default=None, ge=1)


class GapStatusUpdate(BaseModel):
    status: GapStatus
    actor: str
    reason: str = ""


class AddressRequest(BaseModel):
    title: str = ""
    content: str
    actor: str


class SearchRequest(BaseModel):
    query: str = ""


class FeedbackRequest(BaseModel):
    user_id: str
    item_type: str  # "document" or "qa"
    item_id: int


class InteractionCreate(BaseModel):
    input: str
    output: str = ""
    confidence: str | None = None
    escalation_target: str | None = None
    context: dict | str | None = None
    user_id: str | None = None
    created_at: datetime | None = None


class DocumentCreate(BaseModel):
    title: str
    content: str = ""
    ai_summary: str = ""
    tags: list[str] = []
    status: str = "active"
    owner_name: str = ""


class QACreate(BaseModel):
    question: str
    answer: str = ""
    tags: list[str] = []
    status: str = "pending_review"
    owner_name: str = ""


# --------------- Helpers ---------------

def _window(body: DetectRequest | None, max_clusters: int) -> DetectionWindow:
    body = body or DetectRequest()
    return DetectionWindow(
        limit=body.limit or settings.EVENT_WINDOW,
        lookback_days=body.lookback_days or settings.LOOKBACK_DAYS,
        max_clusters=body.max_clusters or max_clusters,
    )


def _actor(name: str) -> Actor:
    name = name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Actor name is required")
    return Actor(name=name)


# --------------- Gap Endpoints ---------------

@app.post("/api/gaps/detect")
async def detect_gaps(body: DetectRequest | None = None):
    """Cluster recent problematic interactions and merge them into content gaps."""
    return await gaps.detect_gaps(_window(body, settings.MAX_CLUSTERS), actor=SYSTEM_ACTOR)


@app.post("/api/gaps/analyze")
async def analyze_gaps(body: DetectRequest | None = None):
    """Batch analysis of low-confidence patterns against existing content."""
    return await gaps.analyze_gaps(_window(body, settings.MAX_BATCH_PATTERNS), actor=SYSTEM_ACTOR)


@app.get("/api/gaps")
async def list_gaps(
    status: str | None = Query(None),
    priority: str | None = Query(None),
):
    """List content gaps, most frequent first."""
    criteria = {}
    if status:
        criteria["status"] = status
    if priority:
        criteria["priority"] = priority
    return await db.filter_entities("ContentGap", order="-frequency", **criteria)


@app.get("/api/gaps/{gap_id}")
async def get_gap(gap_id: int):
    """Get a content gap with the interactions attributed to it."""
    gap = await db.get("ContentGap", gap_id)
    if not gap:
        raise HTTPException(status_code=404, detail="Gap not found")
    attributions = await db.list_attributions(gap_id)
    return {"gap": gap, "attributed_events": [a["event_id"] for a in attributions]}


@app.put("/api/gaps/{gap_id}/status")
async def update_gap_status(gap_id: int, body: GapStatusUpdate):
    """Move a gap through its lifecycle."""
    try:
        result = await gaps.transition_gap(gap_id, body.status, _actor(body.actor), body.reason)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not result:
        raise HTTPException(status_code=404, detail="Gap not found")
    return result


@app.post("/api/gaps/{gap_id}/address")
async def address_gap(gap_id: int, body: AddressRequest):
    """Create the missing content for a gap and mark it addressed."""
    try:
        result = await gaps.address_gap(gap_id, body.title, body.content, _actor(body.actor))
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not result:
        raise HTTPException(status_code=404, detail="Gap not found")
    return result


@app.get("/api/runs")
async def list_runs(limit: int = Query(20, ge=1, le=200)):
    """Recent detection and analysis runs."""
    return await db.list_detection_runs(limit=limit)


# --------------- Search & Recommendations ---------------

@app.post("/api/search")
async def search(body: SearchRequest):
    """Semantic search over active documents and approved Q&A."""
    try:
        return await kb_search.search(body.query)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/recommendations")
async def recommendations(body: UserContext):
    """Personalized recommendations from a user's recent questions."""
    return await kb_search.recommend(body)


@app.post("/api/recommendations/feedback")
async def recommendation_feedback(body: FeedbackRequest):
    """Mark an item as not relevant for a user."""
    try:
        result = await kb_search.mark_not_relevant(body.user_id, body.item_type, body.item_id)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not result:
        raise HTTPException(status_code=404, detail="Item not found")
    return result


@app.post("/api/suggestions")
async def suggestions(body: UserContext):
    """Proactive suggestions from the last hour of activity."""
    return await kb_search.suggest(body)


# --------------- Interaction Log ---------------

@app.post("/api/interactions")
async def log_interaction(body: InteractionCreate):
    """Append a question/answer exchange to the interaction log."""
    if not body.input.strip():
        raise HTTPException(status_code=400, detail="Input is required")
    if body.confidence not in (None, "high", "medium", "low"):
        raise HTTPException(status_code=400, detail="Confidence must be 'high', 'medium' or 'low'")
    return await db.log_interaction(
        body.input,
        confidence=body.confidence,
        escalation_target=body.escalation_target,
        context=body.context,
        user_id=body.user_id,
        output=body.output,
        created_at=body.created_at,
    )


@app.get("/api/interactions")
async def list_interactions(
    user_id: str | None = Query(None),
    confidence: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
):
    """Most recent interactions first."""
    return await db.filter_interactions(user_id=user_id, confidence=confidence, limit=limit)


# --------------- Knowledge Items ---------------

@app.post("/api/documents")
async def create_document(body: DocumentCreate):
    return await db.create("Document", body.model_dump())


@app.get("/api/documents")
async def list_documents(status: str | None = Query(None)):
    if status:
        return await db.filter_entities("Document", status=status)
    return await db.filter_entities("Document")


@app.post("/api/qas")
async def create_qa(body: QACreate):
    return await db.create("CuratedQA", body.model_dump())


@app.get("/api/qas")
async def list_qas(status: str | None = Query(None)):
    if status:
        return await db.filter_entities("CuratedQA", status=status)
    return await db.filter_entities("CuratedQA")


# --------------- Health Dashboard ---------------

@app.get("/api/health")
async def health():
    """Health check with knowledge base and gap counts."""
    gap_counts = {
        status: await db.count("ContentGap", status=status)
        for status in ("identified", "in_progress", "addressed", "dismissed")
    }
    runs = await db.list_detection_runs(limit=1)
    return {
        "status": "ok",
        "version": "0.1.0",
        "documents": await db.count("Document"),
        "curated_qas": await db.count("CuratedQA"),
        "interactions": await db.count_interactions(),
        "gaps_by_status": gap_counts,
        "last_run": runs[0] if runs else None,
        "reasoning_configured": bool(settings.ANTHROPIC_API_KEY),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
