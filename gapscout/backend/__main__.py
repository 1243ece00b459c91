"""CLI entry point: gapscout <command>

Usage:
    gapscout detect                       # Cluster problematic questions into content gaps
    gapscout analyze                      # Batch gap analysis against existing content
    gapscout search "how do refunds work" # Semantic search over the knowledge base
    gapscout gaps                         # List known content gaps
    gapscout gaps --demo                  # Seed the demo knowledge base first (no API keys needed)
    gapscout detect --json                # Machine-readable output
"""

import os
os.environ.pop("CLAUDECODE", None)  # Allow nested Claude SDK calls

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure the backend directory is on the path (for imports when run as module)
sys.path.insert(0, str(Path(__file__).parent))

import database as db
from config import settings
from errors import InputError


BANNER = """\033[1;36m
  GapScout
\033[0m\033[90m  What your knowledge base is missing\033[0m
"""

_PRIORITY_COLORS = {"high": "31", "medium": "33", "low": "90"}


def _progress(msg: str) -> None:
    """Print a progress message to stderr (keeps stdout clean for output)."""
    print(f"\033[90m  → {msg}\033[0m", file=sys.stderr)


def _error(msg: str) -> None:
    print(f"\033[31m  ✗ {msg}\033[0m", file=sys.stderr)


def _success(msg: str) -> None:
    print(f"\033[32m  ✓ {msg}\033[0m", file=sys.stderr)


def _print_gaps(gap_list: list[dict]) -> None:
    if not gap_list:
        print("\033[90m  No content gaps.\033[0m")
        return
    for g in gap_list:
        color = _PRIORITY_COLORS.get(g.get("priority", "low"), "90")
        action = f" \033[90m[{g['action']}]\033[0m" if g.get("action") else ""
        print(
            f"  \033[{color}m●\033[0m \033[1m{g['topic']}\033[0m"
            f" \033[90m#{g['id']} {g['status']} | {g['priority']} | asked {g['frequency']}x"
            f" | {g['suggested_content_type']}\033[0m{action}"
        )
        if g.get("description"):
            print(f"      {g['description']}")
        for q in (g.get("query_examples") or [])[:3]:
            print(f"      \033[90m“{q}”\033[0m")


def _print_results(result: dict) -> None:
    if result.get("intent"):
        print(f"\033[1m  Intent:\033[0m {result['intent']}")
    if not result["results"]:
        print("\033[90m  No matching content.\033[0m")
    for r in result["results"]:
        kind = "DOC" if r["type"] == "document" else "Q&A"
        print(f"  \033[36m{r['confidence']:.2f}\033[0m [{kind} #{r['id']}] \033[1m{r['title']}\033[0m")
        if r.get("highlight"):
            print(f"      {r['highlight']}")
        if r.get("reason"):
            print(f"      \033[90m{r['reason']}\033[0m")
    print(f"\033[90m  Searched {result['total_searched']} items\033[0m", file=sys.stderr)


def _needs_reasoning(command: str) -> bool:
    return command in ("detect", "analyze", "search")


async def main() -> int:
    parser = argparse.ArgumentParser(
        prog="gapscout",
        description="Find knowledge base gaps from poorly answered questions",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Seed the demo knowledge base and interaction log before running",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON (useful for programmatic consumption)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="Detect content gaps from recent interactions")
    detect.add_argument("--lookback-days", type=int, default=settings.LOOKBACK_DAYS)
    detect.add_argument("--limit", type=int, default=settings.EVENT_WINDOW, help="Interactions to read")

    analyze = sub.add_parser("analyze", help="Batch gap analysis against existing content")
    analyze.add_argument("--lookback-days", type=int, default=settings.LOOKBACK_DAYS)
    analyze.add_argument("--limit", type=int, default=settings.EVENT_WINDOW, help="Interactions to read")

    search_cmd = sub.add_parser("search", help="Semantic search over the knowledge base")
    search_cmd.add_argument("query", help="Natural language query")

    gaps_cmd = sub.add_parser("gaps", help="List content gaps")
    gaps_cmd.add_argument("--status", default=None, help="Filter by status")

    args = parser.parse_args()

    if not args.json_output:
        print(BANNER, file=sys.stderr)

    await db.init_db()

    if args.demo:
        from demo_data import seed_demo_data
        counts = await seed_demo_data()
        if any(counts.values()):
            _success(
                f"Seeded {counts['documents']} documents, {counts['qas']} Q&As, "
                f"{counts['interactions']} interactions"
            )
        else:
            _progress("Demo data already present")

    if _needs_reasoning(args.command) and not (
        settings.ANTHROPIC_API_KEY or os.environ.get("ANTHROPIC_API_KEY", "")
    ):
        _error("ANTHROPIC_API_KEY not set. Export it or add to .env file.")
        _error("Hint: `gapscout gaps --demo` works without API keys")
        return 1

    # Lazy import: these modules require claude-agent-sdk
    if args.command in ("detect", "analyze"):
        import gaps
        from models import DetectionWindow

        window = DetectionWindow(
            limit=args.limit,
            lookback_days=args.lookback_days,
            max_clusters=settings.MAX_CLUSTERS if args.command == "detect" else settings.MAX_BATCH_PATTERNS,
        )
        _progress(f"Reading up to {args.limit} interactions from the last {args.lookback_days} days...")
        run = gaps.detect_gaps if args.command == "detect" else gaps.analyze_gaps
        result = await run(window)

        if args.json_output:
            print(json.dumps(result, indent=2))
        else:
            _print_gaps(result["gaps"])
            summary = (
                f"Run #{result['run_id']} {result['status']}: {result['analyzed']} analyzed, "
                f"{result['patterns_found']} patterns, {len(result['gaps'])} gaps touched"
            )
            if result["status"] == "failed":
                _error(summary)
            else:
                _success(summary)
        return 0 if result["status"] != "failed" else 2

    if args.command == "search":
        import search

        try:
            result = await search.search(args.query)
        except InputError as e:
            _error(str(e))
            return 1
        if args.json_output:
            print(json.dumps(result, indent=2))
        else:
            if result["status"] == "error":
                _error(result.get("message", "Search failed"))
            _print_results(result)
        return 0 if result["status"] == "ok" else 2

    # gaps
    criteria = {"status": args.status} if args.status else {}
    gap_list = await db.filter_entities("ContentGap", order="-frequency", **criteria)
    if args.json_output:
        print(json.dumps(gap_list, indent=2))
    else:
        _print_gaps(gap_list)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
