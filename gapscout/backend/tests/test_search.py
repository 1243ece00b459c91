"""Tests for search, recommendation and suggestion flows (agent calls mocked)."""

import json
from datetime import datetime, timedelta, timezone

import pytest

import database as db
import search
from errors import InputError
from models import UserContext


class TestSearch:
    async def test_empty_query_rejected_before_any_call(self, mock_run_agent):
        with pytest.raises(InputError):
            await search.search("   ")
        mock_run_agent.assert_not_called()

    async def test_no_content(self, mock_run_agent):
        result = await search.search("refunds")
        assert result["results"] == []
        assert result["total_searched"] == 0
        mock_run_agent.assert_not_called()

    async def test_ranked_and_enriched(self, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = json.dumps({
            "intent": "Find billing information",
            "results": [
                {"index": 0, "confidence": 0.6, "highlight": "Invoices go out monthly.", "reason": "billing"},
                {"index": 4, "confidence": 0.95, "highlight": "Yes, in Settings.", "reason": "contact"},
                {"index": 2, "confidence": 0.1, "highlight": "", "reason": "unrelated"},
                {"index": 9999, "confidence": 1.0},
            ],
        })
        result = await search.search("who gets the invoice")

        assert result["status"] == "ok"
        assert result["intent"] == "Find billing information"
        assert result["total_searched"] == 5
        assert [(r["type"], r["title"]) for r in result["results"]] == [
            ("qa", "Can I change the billing contact?"),
            ("document", "Billing and Invoices"),
        ]
        assert result["results"][1]["tags"] == ["billing"]

        agent_name, prompt = mock_run_agent.call_args.args
        assert agent_name == "search-ranker"
        assert "[0] DOCUMENT: Billing and Invoices" in prompt
        assert "[4] Q&A: Can I change the billing contact?" in prompt
        assert "Draft notes" not in prompt

    async def test_content_truncated_in_prompt(self, mock_run_agent):
        await db.create("Document", {"title": "Long", "content": "x" * 1000})
        mock_run_agent.return_value = '{"results": []}'
        await search.search("long")
        _, prompt = mock_run_agent.call_args.args
        assert "x" * 600 in prompt
        assert "x" * 601 not in prompt

    async def test_upstream_failure_degrades(self, seeded_knowledge, mock_run_agent):
        mock_run_agent.side_effect = RuntimeError("overloaded")
        result = await search.search("billing")
        assert result["status"] == "error"
        assert result["results"] == []
        assert "overloaded" in result["message"]


class TestRecommend:
    async def test_profile_and_exclusions(self, seeded_knowledge, log_events, mock_run_agent):
        await log_events([
            ("billing contact change", "low", None, {"tags": ["billing"]}),
            ("export invoices", "medium", None, "{broken"),
        ], user_id="u-42")
        await log_events([("unrelated", "low")], user_id="someone-else")
        billing_doc = seeded_knowledge["documents"][0]
        await search.mark_not_relevant("u-42", "document", billing_doc["id"])

        mock_run_agent.return_value = json.dumps({
            "recommendations": [
                {"index": i, "relevance_score": 0.1 * (i + 1), "reason": f"r{i}", "category": "related"}
                for i in range(4)
            ],
            "insights": "You ask a lot about billing.",
        })
        result = await search.recommend(UserContext(user_id="u-42"))

        assert result["status"] == "ok"
        assert result["insights"] == "You ask a lot about billing."
        assert result["user_profile"] == {"queries_analyzed": 2, "interest_tags": ["billing"]}
        titles = [r["title"] for r in result["recommendations"]]
        assert "Billing and Invoices" not in titles
        assert len(titles) == 4
        assert titles[0] == "Can I change the billing contact?"

        _, prompt = mock_run_agent.call_args.args
        assert "billing contact change" in prompt
        assert "unrelated" not in prompt

    async def test_no_threshold_but_capped(self, mock_run_agent):
        for i in range(10):
            await db.create("Document", {"title": f"Doc {i}"})
        mock_run_agent.return_value = json.dumps({
            "recommendations": [{"index": i, "relevance_score": 0.05} for i in range(10)],
        })
        result = await search.recommend(UserContext(user_id="u-1"))
        assert len(result["recommendations"]) == 8

    async def test_upstream_failure(self, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = "no"
        result = await search.recommend(UserContext(user_id="u-1"))
        assert result["status"] == "error"
        assert result["recommendations"] == []

    async def test_mark_unknown_item(self):
        assert await search.mark_not_relevant("u-1", "qa", 9999) is None
        with pytest.raises(InputError):
            await search.mark_not_relevant("u-1", "video", 1)


class TestSuggest:
    async def test_no_recent_activity(self, mock_run_agent):
        now = datetime.now(timezone.utc)
        await db.log_interaction("old question", user_id="u-1", created_at=now - timedelta(hours=3))
        result = await search.suggest(UserContext(user_id="u-1"), now=now)
        assert result == {"suggestions": [], "status": "ok"}
        mock_run_agent.assert_not_called()

    async def test_no_content_skips_reasoning(self, mock_run_agent):
        result = await search.suggest(UserContext(user_id="u-1", recent_queries=["how do I enable sso"]))
        assert result["suggestions"] == []
        assert result["status"] == "ok"
        mock_run_agent.assert_not_called()

    async def test_suggestions_linked(self, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = json.dumps({"suggestions": [
            {"type": "document", "title": "SSO Setup guide", "relevance_score": 0.9, "action": "Read it"},
            {"type": "qa", "title": "password reset", "relevance_score": 0.6, "index": 4},
            {"type": "question", "title": "How do I add SCIM?", "relevance_score": 0.3},
        ]})
        result = await search.suggest(UserContext(user_id="u-1", viewed_titles=["SSO Setup"]))

        assert result["status"] == "ok"
        [sso, qa] = result["suggestions"]
        assert sso["related_document_id"] == seeded_knowledge["documents"][2]["id"]
        assert qa["related_qa_id"] == seeded_knowledge["qas"][1]["id"]

        agent_name, prompt = mock_run_agent.call_args.args
        assert agent_name == "suggester"
        assert "Recent Documents Viewed: SSO Setup" in prompt
