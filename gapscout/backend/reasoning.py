"""Reasoning Service client using Claude Agent SDK.

The service accepts a prompt plus an optional response shape and returns a
best-effort JSON object. Conformance is never guaranteed, so callers still
validate and default every field they read.
"""

import os
os.environ.pop("CLAUDECODE", None)  # Allow nested Claude SDK calls from within Claude Code

import asyncio
import json
import logging
import re

from claude_agent_sdk import (
    ClaudeSDKClient,
    ClaudeAgentOptions,
    AssistantMessage,
    ResultMessage,
    TextBlock,
)

from agents import get_agent_definitions
from config import settings
from errors import UpstreamError

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BARE_JSON = re.compile(r"\{.*\}", re.DOTALL)


async def _run_agent(agent_name: str, prompt: str) -> str:
    """Run a single agent turn and collect its text output."""
    agents = get_agent_definitions()
    agent = agents[agent_name]

    options = ClaudeAgentOptions(
        system_prompt=agent.prompt,
        model=agent.model or settings.REASONING_MODEL,
        mcp_servers={},
        allowed_tools=[],
        permission_mode="bypassPermissions",
        max_turns=1,
    )

    result_text = []
    client = ClaudeSDKClient(options=options)
    await client.connect()
    try:
        await client.query(prompt)
        async for message in client.receive_response():
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        result_text.append(block.text)
            elif isinstance(message, ResultMessage):
                if message.is_error:
                    raise UpstreamError(f"Agent {agent_name} error: {message.result}")
    finally:
        await client.disconnect()

    return "\n".join(result_text)


def extract_json(text: str) -> dict | None:
    """Pull a JSON object out of model output (bare, fenced, or wrapped in prose)."""
    raw = (text or "").strip()
    if not raw:
        return None

    candidates = [raw]
    fenced = _FENCED_JSON.search(raw)
    if fenced:
        candidates.append(fenced.group(1))
    bare = _BARE_JSON.search(raw)
    if bare:
        candidates.append(bare.group())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _shape_instructions(response_shape: dict) -> str:
    return (
        "\n\nReturn ONLY valid JSON matching this JSON schema:\n"
        f"{json.dumps(response_shape, indent=2)}"
    )


async def invoke(
    prompt: str,
    response_shape: dict | None = None,
    *,
    agent: str = "gap-synthesizer",
    timeout: float | None = None,
    retries: int | None = None,
) -> dict:
    """Call the Reasoning Service with a timeout and a bounded retry.

    With a response shape the parsed JSON object is returned; without one the
    raw text comes back as ``{"output": text}``. Raises UpstreamError once all
    attempts failed.
    """
    timeout = settings.REASONING_TIMEOUT if timeout is None else timeout
    retries = settings.REASONING_RETRIES if retries is None else retries
    full_prompt = prompt + _shape_instructions(response_shape) if response_shape else prompt

    last_error: UpstreamError | None = None
    for attempt in range(1 + max(0, retries)):
        try:
            text = await asyncio.wait_for(_run_agent(agent, full_prompt), timeout=timeout)
        except asyncio.TimeoutError:
            last_error = UpstreamError(f"Agent {agent} timed out after {timeout}s")
        except UpstreamError as e:
            last_error = e
        except Exception as e:
            last_error = UpstreamError(f"Agent {agent} call failed: {e}")
        else:
            if response_shape is None:
                return {"output": text}
            parsed = extract_json(text)
            if parsed is not None:
                return parsed
            last_error = UpstreamError(f"Agent {agent} returned an unparsable payload")

        logger.warning(f"Reasoning call attempt {attempt + 1} failed: {last_error}")

    assert last_error is not None
    raise last_error
