"""Entry point for the `gapscout` CLI command when installed via pip/uvx.

Bootstraps sys.path and delegates to the backend __main__ module.

Usage:
    gapscout gaps --demo                    # Demo knowledge base (no API keys needed)
    gapscout detect                         # Gap detection (needs .env)
    gapscout search "refund policy"         # Semantic search
"""

import asyncio
import importlib.util
import os
import sys
from pathlib import Path


def main() -> None:
    # Remove CLAUDECODE env var to allow nested Claude SDK calls
    os.environ.pop("CLAUDECODE", None)

    # Backend modules import each other by bare name
    backend_dir = Path(__file__).parent / "gapscout" / "backend"
    sys.path.insert(0, str(backend_dir))

    spec = importlib.util.spec_from_file_location(
        "gapscout_backend_main", str(backend_dir / "__main__.py")
    )
    assert spec and spec.loader
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)

    sys.exit(asyncio.run(mod.main()))


if __name__ == "__main__":
    main()
