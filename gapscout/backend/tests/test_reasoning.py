"""Tests for the Reasoning Service client (agent calls mocked)."""

import asyncio
from unittest.mock import patch

import pytest

import reasoning
from agents import get_agent_definitions
from errors import UpstreamError

SHAPE = {"type": "object", "properties": {"topic": {"type": "string"}}}


class TestExtractJson:
    def test_bare(self):
        assert reasoning.extract_json('{"topic": "sso"}') == {"topic": "sso"}

    def test_fenced(self):
        text = 'Here you go:\n```json\n{"topic": "sso"}\n```\nAnything else?'
        assert reasoning.extract_json(text) == {"topic": "sso"}

    def test_wrapped_in_prose(self):
        assert reasoning.extract_json('Sure! {"topic": "sso"} Hope that helps.') == {"topic": "sso"}

    def test_array_rejected(self):
        assert reasoning.extract_json("[1, 2, 3]") is None

    def test_garbage(self):
        assert reasoning.extract_json("no json here") is None
        assert reasoning.extract_json("") is None


class TestInvoke:
    async def test_shape_instructions_appended(self, mock_run_agent):
        mock_run_agent.return_value = '{"topic": "sso"}'
        result = await reasoning.invoke("Describe it", SHAPE, agent="gap-synthesizer")
        assert result == {"topic": "sso"}
        agent_name, prompt = mock_run_agent.call_args.args
        assert agent_name == "gap-synthesizer"
        assert prompt.startswith("Describe it")
        assert '"topic"' in prompt

    async def test_without_shape_returns_output(self, mock_run_agent):
        mock_run_agent.return_value = "plain text"
        assert await reasoning.invoke("hi") == {"output": "plain text"}

    async def test_retries_once_then_succeeds(self, mock_run_agent):
        mock_run_agent.side_effect = ["not json", '{"topic": "sso"}']
        result = await reasoning.invoke("x", SHAPE, retries=1)
        assert result == {"topic": "sso"}
        assert mock_run_agent.call_count == 2

    async def test_unparsable_after_retries(self, mock_run_agent):
        mock_run_agent.return_value = "still not json"
        with pytest.raises(UpstreamError, match="unparsable"):
            await reasoning.invoke("x", SHAPE, retries=1)
        assert mock_run_agent.call_count == 2

    async def test_agent_exception_wrapped(self, mock_run_agent):
        mock_run_agent.side_effect = RuntimeError("connection refused")
        with pytest.raises(UpstreamError, match="connection refused"):
            await reasoning.invoke("x", SHAPE, retries=0)

    async def test_timeout(self):
        async def slow(agent_name, prompt):
            await asyncio.sleep(5)
            return "{}"

        with patch("reasoning._run_agent", side_effect=slow):
            with pytest.raises(UpstreamError, match="timed out"):
                await reasoning.invoke("x", SHAPE, timeout=0.01, retries=0)


class TestAgents:
    def test_all_agents_load_prompts(self):
        agents = get_agent_definitions()
        assert set(agents) == {"gap-synthesizer", "gap-analyst", "search-ranker", "recommender", "suggester"}
        for agent in agents.values():
            assert agent.prompt.strip()
            assert agent.tools == []
