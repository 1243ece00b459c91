"""Tests for search, recommendation and suggestion API endpoints."""

import json


class TestSearchEndpoint:
    async def test_search(self, async_client, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = json.dumps({
            "intent": "SSO setup",
            "results": [{"index": 2, "confidence": 0.9, "highlight": "SAML and OIDC", "reason": "exact"}],
        })
        resp = await async_client.post("/api/search", json={"query": "saml"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["intent"] == "SSO setup"
        assert data["results"][0]["title"] == "SSO Setup"
        assert data["results"][0]["confidence"] == 0.9

    async def test_empty_query(self, async_client, mock_run_agent):
        resp = await async_client.post("/api/search", json={"query": ""})
        assert resp.status_code == 400
        mock_run_agent.assert_not_called()

    async def test_upstream_error_is_not_a_500(self, async_client, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = "garbled"
        resp = await async_client.post("/api/search", json={"query": "saml"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "error"


class TestRecommendationEndpoints:
    async def test_recommendations(self, async_client, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = json.dumps({
            "recommendations": [{"index": 1, "relevance_score": 0.7, "reason": "r", "category": "new"}],
            "insights": "Try exports.",
        })
        resp = await async_client.post("/api/recommendations", json={"user_id": "u-1"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["recommendations"][0]["title"] == "Exporting Reports"
        assert data["user_profile"]["queries_analyzed"] == 0

    async def test_feedback_excludes_item(self, async_client, seeded_knowledge, mock_run_agent):
        doc = seeded_knowledge["documents"][0]
        resp = await async_client.post("/api/recommendations/feedback", json={
            "user_id": "u-1", "item_type": "document", "item_id": doc["id"],
        })
        assert resp.status_code == 200

        mock_run_agent.return_value = '{"recommendations": []}'
        await async_client.post("/api/recommendations", json={"user_id": "u-1"})
        _, prompt = mock_run_agent.call_args.args
        assert "Billing and Invoices" not in prompt

    async def test_feedback_unknown_item(self, async_client):
        resp = await async_client.post("/api/recommendations/feedback", json={
            "user_id": "u-1", "item_type": "qa", "item_id": 9999,
        })
        assert resp.status_code == 404

    async def test_feedback_bad_type(self, async_client):
        resp = await async_client.post("/api/recommendations/feedback", json={
            "user_id": "u-1", "item_type": "video", "item_id": 1,
        })
        assert resp.status_code == 400

    async def test_suggestions(self, async_client, seeded_knowledge, mock_run_agent):
        mock_run_agent.return_value = json.dumps({"suggestions": [
            {"type": "exploration", "title": "Set up SCIM", "relevance_score": 0.8, "action": "Ask an admin"},
        ]})
        resp = await async_client.post("/api/suggestions", json={
            "user_id": "u-1", "recent_queries": ["how do I enable sso"],
        })
        assert resp.status_code == 200
        assert [s["title"] for s in resp.json()["suggestions"]] == ["Set up SCIM"]
