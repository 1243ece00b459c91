"""Signal extraction and coarse clustering of problematic interactions.

Problematic events are those that got a low-confidence answer or were escalated
to a human. They are grouped by a cheap deterministic signature (no Reasoning
Service call), so two phrasings of one question only cluster when their
signatures are identical. Topic understanding happens later, per cluster.
"""

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

import database as db
from models import InteractionEvent, QueryCluster

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 5  # keep tokens longer than 4 characters
SIGNATURE_TOKENS = 3
PREFIX_LENGTH = 100

# Context keys whose values become cluster tags
_TAG_KEYS = ("urgency", "customer_type")


def parse_optional_json(raw: str | None) -> tuple[dict | None, str | None]:
    """Parse an optional JSON object.

    Returns (value, None) on success, (None, None) when there is nothing to
    parse, and (None, error) when the payload is malformed or not an object.
    """
    if raw is None or not str(raw).strip():
        return None, None
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        return None, str(e)
    if not isinstance(value, dict):
        return None, f"expected an object, got {type(value).__name__}"
    return value, None


def context_tags(context: dict, keys: tuple[str, ...] = _TAG_KEYS) -> list[str]:
    """Pull tag-like values out of an event context."""
    tags: list[str] = []
    for key in keys:
        value = context.get(key)
        if isinstance(value, str) and value.strip():
            tags.append(value.strip())
    extra = context.get("tags")
    if isinstance(extra, list):
        tags.extend(t.strip() for t in extra if isinstance(t, str) and t.strip())
    return tags


def signature(text: str | None) -> str:
    """Coarse cluster key: first three lower-cased tokens longer than four characters."""
    tokens = (text or "").lower().split()
    return " ".join([t for t in tokens if len(t) >= MIN_TOKEN_LENGTH][:SIGNATURE_TOKENS])


def prefix_signature(text: str | None) -> str:
    """Cluster key used by batch analysis: the first 100 lower-cased characters."""
    return (text or "").lower()[:PREFIX_LENGTH]


def is_problematic(event: InteractionEvent) -> bool:
    return event.confidence == "low" or event.is_escalated


async def load_recent_events(
    limit: int = 500,
    lookback_days: int = 30,
    now: datetime | None = None,
) -> list[InteractionEvent]:
    """Read the most recent ``limit`` events and keep those inside the lookback window."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=lookback_days)
    rows = await db.list_interactions(order="-created_at", limit=limit)

    events = []
    for row in rows:
        try:
            created = db.parse_timestamp(row["created_at"])
        except (TypeError, ValueError):
            logger.warning(f"Skipping interaction #{row.get('id')} with bad timestamp {row.get('created_at')!r}")
            continue
        if created > cutoff:
            events.append(_to_event(row))
    return events


def _to_event(row: dict) -> InteractionEvent:
    confidence = row.get("confidence")
    if confidence not in ("high", "medium", "low"):
        confidence = None
    return InteractionEvent(
        id=row.get("id"),
        user_id=row.get("user_id"),
        input=row.get("input") or "",
        output=row.get("output") or "",
        confidence=confidence,
        escalation_target=row.get("escalation_target") or None,
        context_json=row.get("context_json"),
        created_at=row.get("created_at"),
    )


def extract_problematic(
    events: Iterable[InteractionEvent],
    exclude_ids: set[int] | None = None,
) -> list[InteractionEvent]:
    """Narrow events to low-confidence or escalated ones, minus already-attributed ids."""
    exclude_ids = exclude_ids or set()
    return [e for e in events if is_problematic(e) and e.id not in exclude_ids]


def build_clusters(
    events: Iterable[InteractionEvent],
    *,
    min_size: int = 2,
    max_clusters: int = 10,
    key: Callable[[str | None], str] = signature,
) -> list[QueryCluster]:
    """Group events by signature, drop small clusters, return the largest first.

    Ordering is by descending member count; equal counts keep the order in
    which their signature first appeared.
    """
    clusters: dict[str, QueryCluster] = {}
    for event in events:
        sig = key(event.input)
        if not sig:
            continue
        cluster = clusters.get(sig)
        if cluster is None:
            cluster = clusters[sig] = QueryCluster(signature=sig)
        cluster.events.append(event)

        context, error = parse_optional_json(event.context_json)
        if error:
            cluster.metadata_errors += 1
            logger.debug(f"Ignoring unparsable context on interaction #{event.id}: {error}")
        elif context:
            for tag in context_tags(context):
                if tag not in cluster.tags:
                    cluster.tags.append(tag)

    significant = [c for c in clusters.values() if c.frequency >= min_size]
    significant.sort(key=lambda c: c.frequency, reverse=True)
    return significant[:max_clusters]
