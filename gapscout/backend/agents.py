"""Reasoning Service agent definitions using Claude Agent SDK AgentDefinition."""

from pathlib import Path

from claude_agent_sdk import AgentDefinition

PROMPTS_DIR = Path(__file__).parent / "prompts"


def _load_prompt(filename: str) -> str:
    """Load a prompt file from the prompts directory."""
    return (PROMPTS_DIR / filename).read_text()


def get_agent_definitions() -> dict[str, AgentDefinition]:
    """Return all agent definitions used by gap detection, search and recommendations."""
    return {
        "gap-synthesizer": AgentDefinition(
            description="Names the shared topic behind a cluster of poorly answered questions",
            prompt=_load_prompt("gap_synthesizer.md"),
            model="sonnet",
            tools=[],
        ),
        "gap-analyst": AgentDefinition(
            description="Compares low-confidence query patterns with existing content to find real gaps",
            prompt=_load_prompt("gap_analyst.md"),
            model="sonnet",
            tools=[],
        ),
        "search-ranker": AgentDefinition(
            description="Ranks knowledge base items by semantic relevance to a query",
            prompt=_load_prompt("search_ranker.md"),
            model="sonnet",
            tools=[],
        ),
        "recommender": AgentDefinition(
            description="Recommends knowledge base items from a user's recent activity",
            prompt=_load_prompt("recommender.md"),
            model="sonnet",
            tools=[],
        ),
        "suggester": AgentDefinition(
            description="Suggests what a user might want to read or ask next",
            prompt=_load_prompt("suggester.md"),
            model="haiku",
            tools=[],
        ),
    }
