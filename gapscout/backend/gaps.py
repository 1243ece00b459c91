"""Content gap detection, merge engine and status lifecycle."""

import asyncio
import logging

import database as db
import reasoning
import signals
import synthesizer
from config import settings
from errors import ConflictError, InputError, UpstreamError
from models import Actor, ContentGap, DetectionWindow, GapCandidate, SYSTEM_ACTOR

logger = logging.getLogger(__name__)

MAX_QUERY_EXAMPLES = 10
NEW_GAP_EXAMPLES = 5

TRANSITIONS: dict[str, set[str]] = {
    "identified": {"in_progress", "addressed", "dismissed"},
    "in_progress": {"addressed", "dismissed"},
    "addressed": set(),
    "dismissed": set(),
}


def priority_band(frequency: int) -> str:
    """The one canonical priority rule: high at 5+, medium at 3+, otherwise low."""
    if frequency >= 5:
        return "high"
    if frequency >= 3:
        return "medium"
    return "low"


def topics_overlap(a: str, b: str) -> bool:
    """Case-insensitive substring containment in either direction."""
    a, b = a.strip().lower(), b.strip().lower()
    return bool(a and b) and (a in b or b in a)


def find_match(topic: str, existing: list[dict]) -> dict | None:
    """Pick the existing non-addressed gap a topic folds into.

    Several gaps can overlap a short topic; the highest-frequency one wins and
    equal frequencies keep store order.
    """
    matches = [
        g for g in existing
        if g.get("status") != "addressed" and topics_overlap(g["topic"], topic)
    ]
    if not matches:
        return None
    return max(matches, key=lambda g: g.get("frequency") or 0)


def merged_fields(existing: dict, candidate: GapCandidate) -> dict:
    frequency = (existing.get("frequency") or 0) + candidate.frequency
    examples = list(existing.get("query_examples") or []) + candidate.example_queries
    return {
        "frequency": frequency,
        "query_examples": examples[-MAX_QUERY_EXAMPLES:],
        "priority": priority_band(frequency),
    }


def new_gap_fields(candidate: GapCandidate) -> dict:
    frequency = candidate.frequency or 1
    gap = ContentGap(
        topic=candidate.topic,
        description=candidate.description,
        suggested_tags=candidate.suggested_tags,
        frequency=frequency,
        query_examples=candidate.example_queries[:NEW_GAP_EXAMPLES],
        priority=priority_band(frequency),
        status="identified",
        suggested_content_type=candidate.content_type,
        confidence_scores=["low"],
    )
    return gap.model_dump(exclude={"id", "version", "created_at", "updated_at", "dismissed_reason"})


async def list_open_gaps() -> list[dict]:
    """Every gap that has not been addressed, oldest first."""
    return await db.filter_entities(
        "ContentGap", status=["identified", "in_progress", "dismissed"],
    )


def _replace(existing: list[dict], old: dict, new: dict | None) -> None:
    idx = next((i for i, g in enumerate(existing) if g["id"] == old["id"]), None)
    if idx is None:
        if new is not None:
            existing.append(new)
    elif new is None:
        existing.pop(idx)
    else:
        existing[idx] = new


async def merge_candidate(
    candidate: GapCandidate,
    existing: list[dict],
    actor: Actor = SYSTEM_ACTOR,
) -> tuple[str, dict]:
    """Fold a candidate into the matching gap, or create a new one.

    ``existing`` is updated in place so later candidates in the same run see
    this write. Dismissed gaps still absorb matching candidates and keep their
    status. Returns (action, gap) with action "created" or "updated". Raises
    ConflictError when the matched gap keeps changing underneath us.
    """
    match: dict | None = None
    for attempt in range(1 + max(0, settings.MERGE_RETRIES)):
        match = find_match(candidate.topic, existing)

        if match is None:
            gap = await db.create("ContentGap", {**new_gap_fields(candidate), "updated_by": actor.name})
            existing.append(gap)
            await db.record_attributions(gap["id"], candidate.event_ids)
            logger.info(f"Created content gap #{gap['id']} '{gap['topic']}' (frequency {gap['frequency']})")
            return "created", gap

        try:
            gap = await db.update(
                "ContentGap",
                match["id"],
                {**merged_fields(match, candidate), "updated_by": actor.name},
                expected_version=match["version"],
            )
        except ConflictError as e:
            logger.warning(f"{e}; re-reading (attempt {attempt + 1})")
            _replace(existing, match, await db.get("ContentGap", match["id"]))
            continue

        if gap is None:
            _replace(existing, match, None)
            continue

        _replace(existing, match, gap)
        await db.record_attributions(gap["id"], candidate.event_ids)
        logger.info(f"Merged '{candidate.topic}' into gap #{gap['id']} (frequency {gap['frequency']})")
        return "updated", gap

    assert match is not None
    raise ConflictError("ContentGap", match["id"], match.get("version"))


async def _merge_all(
    candidates: list[GapCandidate],
    actor: Actor,
) -> tuple[list[dict], dict[str, int]]:
    """Merge candidates one at a time; a conflict on one never stops the rest."""
    existing = await list_open_gaps()
    touched: dict[int, dict] = {}
    counts = {"created": 0, "updated": 0, "failed": 0}

    for candidate in candidates:
        try:
            action, gap = await merge_candidate(candidate, existing, actor)
        except ConflictError as e:
            logger.warning(f"Giving up on candidate '{candidate.topic}': {e}")
            counts["failed"] += 1
            continue
        counts[action] += 1
        # a gap created earlier in this run stays "created"
        first = touched.get(gap["id"], {}).get("action", action)
        touched[gap["id"]] = {**gap, "action": first}

    return list(touched.values()), counts


def _run_status(attempted: int, failures: int) -> str:
    if attempted and failures >= attempted:
        return "failed"
    if failures:
        return "partial"
    return "completed"


def _default_window(max_clusters: int) -> DetectionWindow:
    return DetectionWindow(
        limit=settings.EVENT_WINDOW,
        lookback_days=settings.LOOKBACK_DAYS,
        max_clusters=max_clusters,
    )


async def _fail_run(run_id: int, label: str, error: BaseException) -> None:
    if isinstance(error, asyncio.CancelledError):
        logger.warning(f"{label} run #{run_id} cancelled")
    else:
        logger.exception(f"{label} run #{run_id} failed: {error}")
    await db.update_detection_run(run_id, status="failed", completed_at=db.format_timestamp(None))


async def _problematic_window(window: DetectionWindow):
    events = await signals.load_recent_events(window.limit, window.lookback_days)
    exclude = await db.attributed_event_ids() if settings.IDEMPOTENT_DETECTION else set()
    return events, exclude


async def detect_gaps(window: DetectionWindow | None = None, actor: Actor = SYSTEM_ACTOR) -> dict:
    """Run one detection pass over recent interactions.

    Interaction Log failures propagate. Per-cluster synthesis and merge
    failures are isolated: a run where some clusters fail is "partial", one
    where all of them fail is "failed" and reports zero gaps.
    """
    window = window or _default_window(settings.MAX_CLUSTERS)
    run = await db.create_detection_run("detect")
    run_id = run["id"]

    try:
        events, exclude = await _problematic_window(window)
        problematic = signals.extract_problematic(events, exclude)
        clusters = signals.build_clusters(
            problematic,
            min_size=settings.MIN_CLUSTER_SIZE,
            max_clusters=window.max_clusters,
        )
        logger.info(
            f"Gap detection run #{run_id}: {len(events)} events, "
            f"{len(problematic)} problematic, {len(clusters)} clusters"
        )

        succeeded, failed = await synthesizer.synthesize_all(
            clusters, settings.SYNTHESIS_CONCURRENCY, window.lookback_days,
        )
        gaps, counts = await _merge_all([c for _, c in succeeded], actor)
    except (Exception, asyncio.CancelledError) as e:
        await _fail_run(run_id, "Gap detection", e)
        raise

    failures = len(failed) + counts["failed"]
    status = _run_status(len(clusters), failures)
    await db.update_detection_run(
        run_id,
        status=status,
        analyzed=len(events),
        problematic=len(problematic),
        patterns_found=len(clusters),
        gaps_created=counts["created"],
        gaps_updated=counts["updated"],
        failed_clusters=failures,
        completed_at=db.format_timestamp(None),
    )

    return {
        "run_id": run_id,
        "status": status,
        "gaps": [] if status == "failed" else gaps,
        "analyzed": len(events),
        "problematic": len(problematic),
        "patterns_found": len(clusters),
        "failed_clusters": failures,
    }


async def analyze_gaps(window: DetectionWindow | None = None, actor: Actor = SYSTEM_ACTOR) -> dict:
    """Batch variant: one Reasoning Service call compares low-confidence patterns with existing content."""
    window = window or _default_window(settings.MAX_BATCH_PATTERNS)
    run = await db.create_detection_run("analyze")
    run_id = run["id"]

    try:
        return await _analyze(run_id, window, actor)
    except (Exception, asyncio.CancelledError) as e:
        await _fail_run(run_id, "Gap analysis", e)
        raise


async def _analyze(run_id: int, window: DetectionWindow, actor: Actor) -> dict:
    events, exclude = await _problematic_window(window)
    low = [e for e in events if e.confidence == "low" and e.id not in exclude]
    patterns = signals.build_clusters(
        low,
        min_size=settings.MIN_CLUSTER_SIZE,
        max_clusters=window.max_clusters,
        key=signals.prefix_signature,
    )

    result = {
        "run_id": run_id,
        "status": "completed",
        "gaps": [],
        "analyzed": len(low),
        "patterns_found": len(patterns),
    }

    if not patterns:
        result["message"] = "No significant content gaps identified"
        await db.update_detection_run(
            run_id, status="completed", analyzed=len(low),
            completed_at=db.format_timestamp(None),
        )
        return result

    documents = await db.filter_entities("Document", status="active")
    qas = await db.filter_entities("CuratedQA", status="approved")
    titles = [d["title"] for d in documents] + [q["question"] for q in qas]

    try:
        raw = await reasoning.invoke(
            synthesizer.build_analysis_prompt(patterns, titles),
            synthesizer.ANALYSIS_SHAPE,
            agent="gap-analyst",
        )
    except UpstreamError as e:
        logger.warning(f"Gap analysis run #{run_id}: reasoning call failed: {e}")
        await db.update_detection_run(
            run_id, status="failed", analyzed=len(low), patterns_found=len(patterns),
            completed_at=db.format_timestamp(None),
        )
        return {**result, "status": "failed", "message": str(e)}

    candidates = synthesizer.coerce_analysis(raw, patterns)
    gaps, counts = await _merge_all(candidates, actor)
    status = "partial" if counts["failed"] else "completed"

    await db.update_detection_run(
        run_id,
        status=status,
        analyzed=len(low),
        problematic=len(low),
        patterns_found=len(patterns),
        gaps_created=counts["created"],
        gaps_updated=counts["updated"],
        failed_clusters=counts["failed"],
        completed_at=db.format_timestamp(None),
    )
    return {**result, "status": status, "gaps": gaps}


# --------------- Status lifecycle ---------------

async def transition_gap(gap_id: int, status: str, actor: Actor, reason: str = "") -> dict | None:
    """Move a gap along identified -> in_progress -> addressed, or to dismissed."""
    if status not in TRANSITIONS:
        raise InputError(f"Unknown gap status: {status}")
    gap = await db.get("ContentGap", gap_id)
    if not gap:
        return None
    if status not in TRANSITIONS.get(gap["status"], set()):
        raise InputError(f"Cannot move gap #{gap_id} from {gap['status']} to {status}")

    fields: dict = {"status": status, "updated_by": actor.name}
    if status == "dismissed":
        fields["dismissed_reason"] = reason
    elif not actor.is_system:
        fields["assigned_to"] = actor.name
    return await db.update("ContentGap", gap_id, fields, expected_version=gap["version"])


async def address_gap(gap_id: int, title: str, content: str, actor: Actor) -> dict | None:
    """Create the missing content for a gap and mark the gap addressed.

    Gaps that suggest a Q&A get a CuratedQA awaiting review; everything else
    gets a draft Document.
    """
    gap = await db.get("ContentGap", gap_id)
    if not gap:
        return None
    if not TRANSITIONS.get(gap["status"]):
        raise InputError(f"Gap #{gap_id} is already {gap['status']}")

    title = title.strip() or gap["topic"]
    if gap["suggested_content_type"] == "qa":
        item_type = "qa"
        item = await db.create("CuratedQA", {
            "question": title,
            "answer": content,
            "tags": gap["suggested_tags"],
            "status": "pending_review",
            "owner_name": actor.name,
        })
    else:
        item_type = "document"
        item = await db.create("Document", {
            "title": title,
            "content": content,
            "tags": gap["suggested_tags"],
            "status": "draft",
            "owner_name": actor.name,
        })

    updated = await transition_gap(gap_id, "addressed", actor)
    return {"gap": updated, "item_type": item_type, "item": item}
