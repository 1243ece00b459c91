"""Shared fixtures for GapScout backend tests."""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

# Ensure backend is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(autouse=True)
async def test_db(tmp_path):
    """Patch DB_PATH to a per-test temp file, init schema, clean after."""
    import database as db_module

    db_path = str(tmp_path / "test.db")
    original = db_module.DB_PATH
    db_module.DB_PATH = db_path

    await db_module.init_db()
    yield

    db_module.DB_PATH = original


@pytest_asyncio.fixture
async def async_client():
    """HTTPX async client wired to the FastAPI app without invoking lifespan."""
    import httpx
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest_asyncio.fixture
async def log_events(now):
    """Factory: log (input, confidence, escalation) tuples, newest first, a minute apart."""
    import database as db

    async def _log(rows, user_id="u-1", days_ago=0):
        logged = []
        for i, row in enumerate(rows):
            text, confidence, *rest = row
            escalation = rest[0] if rest else None
            context = rest[1] if len(rest) > 1 else None
            logged.append(await db.log_interaction(
                text,
                confidence=confidence,
                escalation_target=escalation,
                context=context,
                user_id=user_id,
                created_at=now - timedelta(days=days_ago, minutes=i + 1),
            ))
        return logged

    return _log


@pytest_asyncio.fixture
async def seeded_knowledge():
    """Three active documents, one draft, two approved Q&As and one pending."""
    import database as db

    docs = [
        await db.create("Document", {"title": "Billing and Invoices", "content": "Invoices go out monthly.", "tags": ["billing"]}),
        await db.create("Document", {"title": "Exporting Reports", "content": "Export any report to CSV.", "tags": ["reports"]}),
        await db.create("Document", {"title": "SSO Setup", "content": "SAML and OIDC are supported.", "tags": ["sso"]}),
        await db.create("Document", {"title": "Draft notes", "content": "wip", "status": "draft"}),
    ]
    qas = [
        await db.create("CuratedQA", {"question": "How do I reset my password?", "answer": "Use the reset link.", "status": "approved"}),
        await db.create("CuratedQA", {"question": "Can I change the billing contact?", "answer": "Yes, in Settings.", "status": "approved"}),
        await db.create("CuratedQA", {"question": "Is there a mobile app?", "answer": "Not yet."}),
    ]
    return {"documents": docs, "qas": qas}


@pytest_asyncio.fixture
async def seeded_gap():
    """An identified gap about refund policy asked three times."""
    import database as db

    return await db.create("ContentGap", {
        "topic": "refund policy",
        "description": "How refunds work",
        "suggested_tags": ["billing"],
        "frequency": 3,
        "query_examples": ["What is your refund policy?"],
        "priority": "medium",
        "status": "identified",
        "suggested_content_type": "document",
        "confidence_scores": ["low"],
    })


@pytest.fixture
def mock_run_agent():
    """Patch reasoning._run_agent to prevent Claude API calls."""
    with patch("reasoning._run_agent", new_callable=AsyncMock) as mock:
        mock.return_value = "{}"
        yield mock

