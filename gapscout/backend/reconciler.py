"""Map index-addressed, scored Reasoning Service output back onto stored knowledge items.

The upstream response refers to candidates by their position in the list we
sent. Indices and scores are untrusted: bad indices are dropped, scores are
clamped to [0, 1], and the canonical item is re-attached from our own list.
"""

import logging
import math

from errors import ValidationError
from models import KnowledgeItem, RankedResult, Suggestion

logger = logging.getLogger(__name__)

SUGGESTION_TYPES = ("document", "qa", "question", "exploration")


def flatten_candidates(
    documents: list[dict],
    qas: list[dict],
    exclude: set[tuple[str, int]] | None = None,
) -> list[KnowledgeItem]:
    """Documents first, then Q&A, in store order. ``exclude`` holds (type, id) pairs."""
    exclude = exclude or set()
    items = []
    for d in documents:
        if ("document", d["id"]) in exclude:
            continue
        items.append(KnowledgeItem(
            type="document",
            id=d["id"],
            title=d["title"],
            content=d.get("content") or d.get("ai_summary") or "",
            summary=d.get("ai_summary") or (d.get("content") or "")[:200],
            tags=d.get("tags") or [],
            owner_name=d.get("owner_name") or "",
            created_at=d.get("created_at"),
            updated_at=d.get("updated_at"),
        ))
    for q in qas:
        if ("qa", q["id"]) in exclude:
            continue
        items.append(KnowledgeItem(
            type="qa",
            id=q["id"],
            title=q["question"],
            content=q.get("answer") or "",
            summary=(q.get("answer") or "")[:200],
            tags=q.get("tags") or [],
            owner_name=q.get("owner_name") or "",
            created_at=q.get("created_at"),
            updated_at=q.get("updated_at"),
        ))
    return items


def coerce_index(value: object, size: int) -> int:
    """An integer (or integral float) in [0, size). Booleans are not indices."""
    if isinstance(value, bool):
        raise ValidationError(f"Index is not a number: {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"Index is not an integer: {value!r}")
    if not 0 <= value < size:
        raise ValidationError(f"Index {value} out of range for {size} candidates")
    return value


def clamp_score(value: object) -> float:
    """Coerce a score to float and clip it into [0, 1]. Missing means 0."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"Score is not a number: {value!r}")
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Score is not a number: {value!r}") from None
    if math.isnan(score):
        raise ValidationError("Score is NaN")
    return min(1.0, max(0.0, score))


def _text(value: object) -> str:
    return "" if value is None else str(value)


def reconcile(
    candidates: list[KnowledgeItem],
    entries: object,
    *,
    score_field: str = "confidence",
    min_score: float | None = None,
    limit: int | None = None,
) -> list[RankedResult]:
    """Validate, clamp, rank, threshold and cap scored entries.

    Sorting is stable, so equal scores keep their upstream order. When an index
    appears more than once only its best-ranked entry survives.
    """
    if not isinstance(entries, list):
        if entries is not None:
            logger.warning(f"Expected a list of scored entries, got {type(entries).__name__}")
        return []

    scored: list[tuple[int, float, dict]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"Dropping scored entry that is not an object: {entry!r}")
            continue
        try:
            index = coerce_index(entry.get("index"), len(candidates))
            score = clamp_score(entry.get(score_field))
        except ValidationError as e:
            logger.warning(f"Dropping scored entry: {e}")
            continue
        scored.append((index, score, entry))

    scored.sort(key=lambda s: s[1], reverse=True)

    results: list[RankedResult] = []
    seen: set[int] = set()
    for index, score, entry in scored:
        if index in seen:
            continue
        seen.add(index)
        if min_score is not None and score < min_score:
            continue
        results.append(RankedResult(
            **candidates[index].model_dump(),
            confidence=score,
            highlight=_text(entry.get("highlight")),
            reason=_text(entry.get("reason")),
            category=_text(entry.get("category")),
        ))
        if limit is not None and len(results) >= limit:
            break
    return results


def _titles_overlap(a: str, b: str) -> bool:
    a, b = a.strip().lower(), b.strip().lower()
    return bool(a and b) and (a in b or b in a)


def match_by_title(title: str, candidates: list[KnowledgeItem], item_type: str) -> KnowledgeItem | None:
    return next(
        (c for c in candidates if c.type == item_type and _titles_overlap(c.title, title)),
        None,
    )


def reconcile_suggestions(
    candidates: list[KnowledgeItem],
    entries: object,
    *,
    min_score: float = 0.5,
    limit: int = 5,
) -> list[Suggestion]:
    """Turn proactive suggestions into Suggestion records.

    A valid ``index`` links the suggestion to that candidate; otherwise
    document and Q&A suggestions are linked by title containment.
    """
    if not isinstance(entries, list):
        return []

    suggestions: list[Suggestion] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        title = _text(entry.get("title")).strip()
        if not title:
            logger.warning("Dropping suggestion without a title")
            continue
        try:
            score = clamp_score(entry.get("relevance_score"))
        except ValidationError as e:
            logger.warning(f"Dropping suggestion '{title}': {e}")
            continue

        kind = _text(entry.get("type")).strip().lower()
        if kind not in SUGGESTION_TYPES:
            kind = "exploration"

        item = None
        if entry.get("index") is not None:
            try:
                item = candidates[coerce_index(entry.get("index"), len(candidates))]
            except ValidationError as e:
                logger.debug(f"Suggestion '{title}' has no usable index: {e}")
        if item is None and kind in ("document", "qa"):
            item = match_by_title(title, candidates, kind)

        suggestions.append(Suggestion(
            type=kind,
            title=title,
            description=_text(entry.get("description")),
            action=_text(entry.get("action")),
            relevance_score=score,
            related_document_id=item.id if item and item.type == "document" else None,
            related_qa_id=item.id if item and item.type == "qa" else None,
            item=item,
        ))

    suggestions.sort(key=lambda s: s.relevance_score, reverse=True)
    return [s for s in suggestions if s.relevance_score >= min_score][:limit]
