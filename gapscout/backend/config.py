"""Application configuration using pydantic-settings."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    ANTHROPIC_API_KEY: str = ""
    DB_PATH: str = str(Path(__file__).parent / "gapscout.db")
    LOG_DIR: str = str(Path(__file__).parent / "logs")
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Reasoning Service
    REASONING_MODEL: str = "sonnet"
    REASONING_TIMEOUT: float = 60.0
    REASONING_RETRIES: int = 1

    # Gap detection
    EVENT_WINDOW: int = 500
    LOOKBACK_DAYS: int = 30
    MIN_CLUSTER_SIZE: int = 2
    MAX_CLUSTERS: int = 10
    MAX_BATCH_PATTERNS: int = 20
    SYNTHESIS_CONCURRENCY: int = 3
    MERGE_RETRIES: int = 1
    IDEMPOTENT_DETECTION: bool = True

    # Seed the demo knowledge base on service startup
    SEED_DEMO_DATA: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

# Ensure log directory exists
os.makedirs(settings.LOG_DIR, exist_ok=True)
