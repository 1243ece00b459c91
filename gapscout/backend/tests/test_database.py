"""Tests for database CRUD operations."""

from datetime import datetime, timedelta, timezone

import pytest

import database as db
from errors import ConflictError


class TestKnowledgeStore:
    async def test_create_document_defaults(self):
        doc = await db.create("Document", {"title": "Billing", "tags": ["billing"]})
        assert doc["id"] is not None
        assert doc["status"] == "active"
        assert doc["tags"] == ["billing"]
        assert doc["version"] == 1
        assert doc["created_at"] == doc["updated_at"]

    async def test_create_qa_defaults_to_pending_review(self):
        qa = await db.create("CuratedQA", {"question": "Q?", "answer": "A."})
        assert qa["status"] == "pending_review"
        assert qa["tags"] == []

    async def test_create_unknown_collection(self):
        with pytest.raises(ValueError):
            await db.create("Repo", {"name": "x"})

    async def test_create_unknown_field(self):
        with pytest.raises(ValueError):
            await db.create("Document", {"title": "x", "rule_text": "nope"})

    async def test_get_not_found(self):
        assert await db.get("ContentGap", 9999) is None

    async def test_filter_equality(self):
        await db.create("Document", {"title": "a"})
        await db.create("Document", {"title": "b", "status": "draft"})
        active = await db.filter_entities("Document", status="active")
        assert [d["title"] for d in active] == ["a"]

    async def test_filter_list_means_any_of(self):
        await db.create("Document", {"title": "a"})
        await db.create("Document", {"title": "b", "status": "draft"})
        await db.create("Document", {"title": "c", "status": "archived"})
        docs = await db.filter_entities("Document", status=["active", "draft"])
        assert {d["title"] for d in docs} == {"a", "b"}

    async def test_filter_empty_list_matches_nothing(self):
        await db.create("Document", {"title": "a"})
        assert await db.filter_entities("Document", status=[]) == []

    async def test_filter_order_and_limit(self):
        for topic, freq in [("a", 2), ("b", 7), ("c", 4)]:
            await db.create("ContentGap", {"topic": topic, "frequency": freq})
        top = await db.filter_entities("ContentGap", order="-frequency", limit=2)
        assert [g["topic"] for g in top] == ["b", "c"]

    async def test_filter_bad_order_field(self):
        with pytest.raises(ValueError):
            await db.filter_entities("Document", order="-bogus")

    async def test_count(self):
        await db.create("CuratedQA", {"question": "a", "status": "approved"})
        await db.create("CuratedQA", {"question": "b"})
        assert await db.count("CuratedQA") == 2
        assert await db.count("CuratedQA", status="approved") == 1


class TestOptimisticUpdate:
    async def test_update_bumps_version(self):
        gap = await db.create("ContentGap", {"topic": "sso"})
        updated = await db.update("ContentGap", gap["id"], {"frequency": 4})
        assert updated["frequency"] == 4
        assert updated["version"] == 2

    async def test_update_with_matching_version(self):
        gap = await db.create("ContentGap", {"topic": "sso"})
        updated = await db.update("ContentGap", gap["id"], {"priority": "high"}, expected_version=1)
        assert updated["priority"] == "high"

    async def test_update_with_stale_version_conflicts(self):
        gap = await db.create("ContentGap", {"topic": "sso"})
        await db.update("ContentGap", gap["id"], {"frequency": 2})
        with pytest.raises(ConflictError) as exc:
            await db.update("ContentGap", gap["id"], {"frequency": 9}, expected_version=1)
        assert exc.value.entity_id == gap["id"]
        current = await db.get("ContentGap", gap["id"])
        assert current["frequency"] == 2

    async def test_update_missing_returns_none(self):
        assert await db.update("ContentGap", 9999, {"frequency": 2}) is None

    async def test_update_json_columns_roundtrip(self):
        gap = await db.create("ContentGap", {"topic": "sso"})
        updated = await db.update("ContentGap", gap["id"], {"query_examples": ["q1", "q2"]})
        assert updated["query_examples"] == ["q1", "q2"]


class TestInteractionLog:
    async def test_log_dict_context(self):
        event = await db.log_interaction("hello", confidence="low", context={"urgency": "high"})
        assert event["context_json"] == '{"urgency": "high"}'

    async def test_log_malformed_context_stored_verbatim(self):
        event = await db.log_interaction("hello", context="{not json")
        assert event["context_json"] == "{not json"

    async def test_list_newest_first(self):
        now = datetime.now(timezone.utc)
        await db.log_interaction("old", created_at=now - timedelta(days=2))
        await db.log_interaction("new", created_at=now)
        rows = await db.list_interactions(order="-created_at", limit=10)
        assert [r["input"] for r in rows] == ["new", "old"]

    async def test_list_limit(self):
        for i in range(5):
            await db.log_interaction(f"q{i}")
        assert len(await db.list_interactions(limit=3)) == 3

    async def test_filter_by_user_and_since(self):
        now = datetime.now(timezone.utc)
        await db.log_interaction("a", user_id="u1", created_at=now - timedelta(hours=3))
        await db.log_interaction("b", user_id="u1", created_at=now - timedelta(minutes=5))
        await db.log_interaction("c", user_id="u2", created_at=now - timedelta(minutes=5))
        rows = await db.filter_interactions(user_id="u1", since=now - timedelta(hours=1))
        assert [r["input"] for r in rows] == ["b"]

    async def test_count_interactions(self):
        await db.log_interaction("a", confidence="low")
        await db.log_interaction("b", confidence="high")
        assert await db.count_interactions() == 2
        assert await db.count_interactions(confidence="low") == 1

    async def test_timestamp_format_parses_back(self):
        event = await db.log_interaction("a", created_at="2026-03-01T10:00:00Z")
        assert event["created_at"] == "2026-03-01 10:00:00"
        assert db.parse_timestamp(event["created_at"]).tzinfo is not None


class TestAttributions:
    async def _events(self, n):
        return [(await db.log_interaction(f"q{i}"))["id"] for i in range(n)]

    async def test_record_and_read(self):
        e1, e2 = await self._events(2)
        gap = await db.create("ContentGap", {"topic": "sso"})
        assert await db.record_attributions(gap["id"], [e1, e2]) == 2
        assert await db.attributed_event_ids() == {e1, e2}
        assert [a["event_id"] for a in await db.list_attributions(gap["id"])] == [e1, e2]

    async def test_event_attributed_once(self):
        e1, e2 = await self._events(2)
        g1 = await db.create("ContentGap", {"topic": "sso"})
        g2 = await db.create("ContentGap", {"topic": "saml"})
        await db.record_attributions(g1["id"], [e1])
        await db.record_attributions(g2["id"], [e1, e2])
        assert [a["event_id"] for a in await db.list_attributions(g1["id"])] == [e1]
        assert [a["event_id"] for a in await db.list_attributions(g2["id"])] == [e2]

    async def test_empty(self):
        assert await db.record_attributions(1, []) == 0


class TestFeedbackAndRuns:
    async def test_mark_not_relevant_idempotent(self):
        await db.mark_not_relevant("u1", "document", 3)
        await db.mark_not_relevant("u1", "document", 3)
        assert await db.not_relevant_items("u1") == {("document", 3)}
        assert await db.not_relevant_items("u2") == set()

    async def test_detection_run_lifecycle(self):
        run = await db.create_detection_run("analyze")
        assert run["status"] == "running"
        assert run["mode"] == "analyze"
        updated = await db.update_detection_run(run["id"], status="completed", analyzed=12)
        assert updated["status"] == "completed"
        assert updated["analyzed"] == 12
        runs = await db.list_detection_runs()
        assert runs[0]["id"] == run["id"]
