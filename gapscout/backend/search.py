"""Semantic search, recommendations and proactive suggestions.

Each flow builds an index-ordered candidate list from the Knowledge Store,
asks the Reasoning Service to score it, and reconciles the answer back onto
the stored items. A failed Reasoning Service call degrades to an empty result
with ``status="error"``.
"""

import logging
from datetime import datetime, timedelta, timezone

import database as db
import reasoning
import reconciler
import signals
from errors import InputError, UpstreamError
from models import KnowledgeItem, UserContext

logger = logging.getLogger(__name__)

SEARCH_CONTEXT_CHARS = 600
SEARCH_MIN_SCORE = 0.3
SEARCH_LIMIT = 6

RECOMMEND_HISTORY = 20
RECOMMEND_LIMIT = 8

SUGGEST_WINDOW = timedelta(hours=1)
SUGGEST_HISTORY = 50
SUGGEST_MIN_SCORE = 0.5
SUGGEST_LIMIT = 5

SEARCH_SHAPE = {
    "type": "object",
    "properties": {
        "intent": {"type": "string"},
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "index": {"type": "number"},
                    "confidence": {"type": "number"},
                    "highlight": {"type": "string"},
                    "reason": {"type": "string"},
                },
            },
        },
    },
}

RECOMMEND_SHAPE = {
    "type": "object",
    "properties": {
        "recommendations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "index": {"type": "number"},
                    "relevance_score": {"type": "number"},
                    "reason": {"type": "string"},
                    "category": {"type": "string"},
                },
            },
        },
        "insights": {"type": "string"},
    },
}

SUGGEST_SHAPE = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": list(reconciler.SUGGESTION_TYPES)},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "relevance_score": {"type": "number"},
                    "action": {"type": "string"},
                    "index": {"type": "number"},
                },
            },
        },
    },
}


async def load_candidates(exclude: set[tuple[str, int]] | None = None) -> list[KnowledgeItem]:
    """Active documents and approved Q&A, flattened in a stable order."""
    documents = await db.filter_entities("Document", status="active")
    qas = await db.filter_entities("CuratedQA", status="approved")
    return reconciler.flatten_candidates(documents, qas, exclude)


def _label(item: KnowledgeItem) -> str:
    return "DOCUMENT" if item.type == "document" else "Q&A"


def _unique(values) -> list[str]:
    seen: list[str] = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen


def _tags_from_events(rows: list[dict]) -> list[str]:
    tags: list[str] = []
    for row in rows:
        context, error = signals.parse_optional_json(row.get("context_json"))
        if error:
            logger.debug(f"Ignoring unparsable context on interaction #{row.get('id')}: {error}")
        elif context:
            tags.extend(signals.context_tags(context, keys=()))
    return tags


# --------------- Search ---------------

def build_search_prompt(query: str, candidates: list[KnowledgeItem]) -> str:
    context = "\n\n".join(
        f"[{i}] {_label(item)}: {item.title}\n"
        f"Content: {item.content[:SEARCH_CONTEXT_CHARS]}\n"
        f"Tags: {', '.join(item.tags) or 'None'}\n---"
        for i, item in enumerate(candidates)
    )
    return (
        f'USER QUERY: "{query}"\n\n'
        f"KNOWLEDGE BASE CONTENT:\n{context}\n\n"
        f"Return the top {SEARCH_LIMIT} results with confidence scores above {SEARCH_MIN_SCORE}, "
        "plus a brief description of what the user is looking for as `intent`."
    )


async def search(query: str) -> dict:
    """Rank knowledge items against a natural language query."""
    query = (query or "").strip()
    if not query:
        raise InputError("Query is required")

    candidates = await load_candidates()
    if not candidates:
        return {
            "intent": "No knowledge base content available",
            "results": [],
            "total_searched": 0,
            "status": "ok",
        }

    try:
        raw = await reasoning.invoke(
            build_search_prompt(query, candidates), SEARCH_SHAPE, agent="search-ranker",
        )
    except UpstreamError as e:
        logger.warning(f"Search failed for '{query}': {e}")
        return {
            "intent": "",
            "results": [],
            "total_searched": len(candidates),
            "status": "error",
            "message": f"Search failed: {e}",
        }

    results = reconciler.reconcile(
        candidates,
        raw.get("results"),
        score_field="confidence",
        min_score=SEARCH_MIN_SCORE,
        limit=SEARCH_LIMIT,
    )
    intent = raw.get("intent")
    return {
        "intent": intent if isinstance(intent, str) else "",
        "results": [r.model_dump() for r in results],
        "total_searched": len(candidates),
        "status": "ok",
    }


# --------------- Recommendations ---------------

def build_recommend_prompt(
    queries: list[str],
    tags: list[str],
    role: str,
    candidates: list[KnowledgeItem],
) -> str:
    content = "\n\n---\n\n".join(
        f"[{i}] {'DOC' if item.type == 'document' else 'QA'}: {item.title}\n"
        f"Summary: {item.summary[:300]}\n"
        f"Tags: {', '.join(item.tags)}\n"
        f"Created: {item.created_at}"
        for i, item in enumerate(candidates)
    )
    return (
        "USER PROFILE:\n"
        f"- Recent queries: {', '.join(queries) or 'None'}\n"
        f"- Interest tags: {', '.join(tags) or 'General'}\n"
        f"- Role: {role}\n\n"
        f"AVAILABLE CONTENT:\n{content}\n\n"
        f"Recommend the top {RECOMMEND_LIMIT} most relevant items."
    )


async def recommend(user_context: UserContext) -> dict:
    """Recommend items from the user's recent interactions, minus items they marked not relevant."""
    rows = await db.filter_interactions(
        user_id=user_context.user_id, order="-created_at", limit=RECOMMEND_HISTORY,
    )
    queries = _unique([r["input"] for r in rows])
    tags = _unique(user_context.tags + _tags_from_events(rows))
    profile = {"queries_analyzed": len(rows), "interest_tags": tags}

    exclude = await db.not_relevant_items(user_context.user_id)
    candidates = await load_candidates(exclude)
    if not candidates:
        return {
            "recommendations": [],
            "insights": "No knowledge base content available",
            "user_profile": profile,
            "status": "ok",
        }

    try:
        raw = await reasoning.invoke(
            build_recommend_prompt(queries, tags, user_context.role, candidates),
            RECOMMEND_SHAPE,
            agent="recommender",
        )
    except UpstreamError as e:
        logger.warning(f"Recommendations failed for user {user_context.user_id}: {e}")
        return {
            "recommendations": [],
            "insights": "",
            "user_profile": profile,
            "status": "error",
            "message": f"Recommendations failed: {e}",
        }

    results = reconciler.reconcile(
        candidates,
        raw.get("recommendations"),
        score_field="relevance_score",
        limit=RECOMMEND_LIMIT,
    )
    insights = raw.get("insights")
    return {
        "recommendations": [r.model_dump() for r in results],
        "insights": insights if isinstance(insights, str) else "",
        "user_profile": profile,
        "status": "ok",
    }


async def mark_not_relevant(user_id: str, item_type: str, item_id: int) -> dict | None:
    """Exclude an item from a user's future recommendations. None if the item does not exist."""
    if item_type not in ("document", "qa"):
        raise InputError(f"Unknown item type: {item_type}")
    collection = "Document" if item_type == "document" else "CuratedQA"
    if not await db.get(collection, item_id):
        return None
    return await db.mark_not_relevant(user_id, item_type, item_id)


# --------------- Proactive suggestions ---------------

def build_suggest_prompt(
    viewed: list[str],
    queries: list[str],
    tags: list[str],
    candidates: list[KnowledgeItem],
) -> str:
    available = "\n".join(
        f"[{i}] {_label(item)}: {item.title} (tags: {', '.join(item.tags)})"
        for i, item in enumerate(candidates)
    )
    return (
        "Based on the user's recent activity, suggest 3-5 proactive recommendations:\n\n"
        f"Recent Documents Viewed: {', '.join(viewed[:5]) or 'None'}\n"
        f"Recent Queries: {', '.join(queries[:3]) or 'None'}\n"
        f"Interested Tags: {', '.join(tags[:5]) or 'None'}\n\n"
        f"Available content:\n{available or '(none)'}"
    )


async def suggest(user_context: UserContext, now: datetime | None = None) -> dict:
    """Proactive suggestions from what the user did in the last hour."""
    now = now or datetime.now(timezone.utc)
    rows = await db.filter_interactions(
        user_id=user_context.user_id, since=now - SUGGEST_WINDOW, limit=SUGGEST_HISTORY,
    )
    queries = _unique(user_context.recent_queries + [r["input"] for r in rows])
    viewed = _unique(user_context.viewed_titles)
    tags = _unique(user_context.tags + _tags_from_events(rows))

    if not (queries or viewed or tags):
        return {"suggestions": [], "status": "ok"}

    exclude = await db.not_relevant_items(user_context.user_id)
    candidates = await load_candidates(exclude)
    if not candidates:
        return {"suggestions": [], "status": "ok", "message": "No knowledge base content available"}

    try:
        raw = await reasoning.invoke(
            build_suggest_prompt(viewed, queries, tags, candidates),
            SUGGEST_SHAPE,
            agent="suggester",
        )
    except UpstreamError as e:
        logger.warning(f"Suggestions failed for user {user_context.user_id}: {e}")
        return {"suggestions": [], "status": "error", "message": f"Suggestions failed: {e}"}

    suggestions = reconciler.reconcile_suggestions(
        candidates,
        raw.get("suggestions"),
        min_score=SUGGEST_MIN_SCORE,
        limit=SUGGEST_LIMIT,
    )
    return {"suggestions": [s.model_dump() for s in suggestions], "status": "ok"}
