"""Gap synthesis: turn a query cluster into a structured gap candidate.

The Reasoning Service is asked for a topic, content type, description and tags.
Nothing it returns is trusted: every field is optional and gets a default
before the candidate reaches the merge engine.
"""

import asyncio
import logging
import math

import reasoning
from errors import ValidationError
from models import GapCandidate, QueryCluster

logger = logging.getLogger(__name__)

PROMPT_EXAMPLES = 3
CANDIDATE_EXAMPLES = 5

CONTENT_TYPES = ("document", "qa", "both")

_CONTENT_TYPE_ALIASES = {
    "q&a": "qa",
    "q & a": "qa",
    "faq": "qa",
    "question": "qa",
    "doc": "document",
    "docs": "document",
    "guide": "document",
    "process guide": "document",
    "article": "document",
}

GAP_SHAPE = {
    "type": "object",
    "properties": {
        "topic": {"type": "string"},
        "content_type": {"type": "string"},
        "description": {"type": "string"},
        "suggested_tags": {"type": "array", "items": {"type": "string"}},
    },
}

ANALYSIS_SHAPE = {
    "type": "object",
    "properties": {
        "gaps": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "topic": {"type": "string"},
                    "description": {"type": "string"},
                    "suggested_tags": {"type": "array", "items": {"type": "string"}},
                    "frequency": {"type": "number"},
                    "suggested_content_type": {"type": "string"},
                },
            },
        },
    },
}


# --------------- Field coercion ---------------

def coerce_text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def coerce_tags(value: object) -> list[str]:
    """Keep non-empty string tags, lower-cased, first occurrence wins."""
    if not isinstance(value, list):
        return []
    tags: list[str] = []
    for item in value:
        if isinstance(item, str):
            tag = item.strip().lower()
            if tag and tag not in tags:
                tags.append(tag)
    return tags


def normalize_content_type(value: object) -> str:
    if not isinstance(value, str):
        return "document"
    key = value.strip().lower()
    if key in CONTENT_TYPES:
        return key
    return _CONTENT_TYPE_ALIASES.get(key, "document")


def coerce_frequency(value: object, default: int = 1) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and math.isfinite(value):
        return max(1, int(value))
    if isinstance(value, str) and value.strip().isdigit():
        return max(1, int(value.strip()))
    return default


def coerce_candidate(
    raw: object,
    *,
    frequency: int,
    example_queries: list[str],
    event_ids: list[int] | None = None,
    content_type_key: str = "content_type",
) -> GapCandidate:
    """Build a candidate from an untrusted payload. A missing topic is a ValidationError."""
    if not isinstance(raw, dict):
        raise ValidationError(f"Gap payload is not an object: {type(raw).__name__}")
    topic = coerce_text(raw.get("topic"))
    if not topic:
        raise ValidationError("Gap payload has no topic")
    return GapCandidate(
        topic=topic,
        description=coerce_text(raw.get("description")),
        suggested_tags=coerce_tags(raw.get("suggested_tags")),
        content_type=normalize_content_type(raw.get(content_type_key)),
        frequency=max(1, frequency),
        example_queries=example_queries[:CANDIDATE_EXAMPLES],
        event_ids=event_ids or [],
    )


# --------------- Per-cluster synthesis ---------------

def build_gap_prompt(cluster: QueryCluster, lookback_days: int = 30) -> str:
    queries = "\n".join(f"- {q}" for q in cluster.example_queries(PROMPT_EXAMPLES))
    prompt = (
        "Analyze these similar user queries that resulted in low confidence or escalation:\n\n"
        f"Queries:\n{queries}\n\n"
        f"Frequency: {cluster.frequency} times in {lookback_days} days\n"
        f"Low confidence: {cluster.low_confidence_count}\n"
        f"Escalations: {cluster.escalation_count}\n"
    )
    if cluster.tags:
        prompt += f"Context tags: {', '.join(cluster.tags)}\n"
    prompt += (
        "\nProvide:\n"
        "1. A clear topic/theme these queries share\n"
        "2. Suggested content type (document, qa, or both)\n"
        "3. Brief description of what content should cover\n"
        "4. Suggested tags"
    )
    return prompt


async def synthesize(cluster: QueryCluster, lookback_days: int = 30) -> GapCandidate:
    """Ask the Reasoning Service to describe one cluster. Raises UpstreamError or ValidationError."""
    raw = await reasoning.invoke(
        build_gap_prompt(cluster, lookback_days),
        GAP_SHAPE,
        agent="gap-synthesizer",
    )
    return coerce_candidate(
        raw,
        frequency=cluster.frequency,
        example_queries=cluster.example_queries(CANDIDATE_EXAMPLES),
        event_ids=cluster.event_ids,
    )


async def synthesize_all(
    clusters: list[QueryCluster],
    concurrency: int = 3,
    lookback_days: int = 30,
) -> tuple[list[tuple[QueryCluster, GapCandidate]], list[tuple[QueryCluster, Exception]]]:
    """Synthesize clusters concurrently. One cluster failing never affects the others.

    Returns (succeeded, failed) pairs, both in cluster order.
    """
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _one(cluster: QueryCluster) -> GapCandidate:
        async with sem:
            return await synthesize(cluster, lookback_days)

    results = await asyncio.gather(*[_one(c) for c in clusters], return_exceptions=True)

    succeeded: list[tuple[QueryCluster, GapCandidate]] = []
    failed: list[tuple[QueryCluster, Exception]] = []
    for cluster, result in zip(clusters, results):
        if isinstance(result, Exception):
            logger.warning(f"Gap synthesis failed for cluster '{cluster.signature}': {result}")
            failed.append((cluster, result))
        elif isinstance(result, BaseException):
            raise result
        else:
            succeeded.append((cluster, result))
    return succeeded, failed


# --------------- Batch analysis ---------------

def build_analysis_prompt(patterns: list[QueryCluster], existing_titles: list[str]) -> str:
    topics = "\n".join(f"- {t}" for t in existing_titles[:30]) or "- (none)"
    lines = "\n".join(
        f'{i + 1}. "{p.events[0].input}" (asked {p.frequency}x)' for i, p in enumerate(patterns)
    )
    return (
        f"Existing content topics:\n{topics}\n\n"
        f"Recent low-confidence query patterns (indicating potential gaps):\n{lines}\n\n"
        "Identify 3-5 real content gaps where documentation is missing or insufficient."
    )


def coerce_analysis(raw: object, patterns: list[QueryCluster]) -> list[GapCandidate]:
    """Turn a batch analysis payload into candidates, dropping malformed entries.

    Example queries are the pattern examples whose text contains the topic.
    """
    gaps = raw.get("gaps") if isinstance(raw, dict) else None
    if not isinstance(gaps, list):
        return []

    candidates = []
    for entry in gaps:
        topic = coerce_text(entry.get("topic")).lower() if isinstance(entry, dict) else ""
        matching = [p for p in patterns if topic and topic in p.events[0].input.lower()]
        try:
            candidate = coerce_candidate(
                entry,
                frequency=coerce_frequency(entry.get("frequency")) if isinstance(entry, dict) else 1,
                example_queries=[p.events[0].input for p in matching],
                event_ids=[eid for p in matching for eid in p.event_ids],
                content_type_key="suggested_content_type",
            )
        except ValidationError as e:
            logger.warning(f"Dropping gap from batch analysis: {e}")
            continue
        candidates.append(candidate)
    return candidates
