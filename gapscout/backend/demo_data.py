"""Demo dataset for --demo mode.

A small support knowledge base plus a month of logged questions, some of them
poorly answered. No API keys needed to seed: everything goes straight into the
local SQLite database.
"""

from datetime import datetime, timedelta, timezone

import database as db

DEMO_DOCUMENTS: list[dict] = [
    {
        "title": "Getting Started with Your Account",
        "content": "Create an account, verify your email, and invite teammates from the Members page. "
                   "Admins can assign roles (viewer, editor, admin) at any time.",
        "ai_summary": "Account setup, email verification and inviting teammates.",
        "tags": ["onboarding", "account"],
        "owner_name": "Dana",
    },
    {
        "title": "Billing and Invoices",
        "content": "Invoices are issued on the first business day of each month and emailed to the billing "
                   "contact. Download past invoices from Settings > Billing > History.",
        "ai_summary": "When invoices are issued and where to download them.",
        "tags": ["billing", "invoices"],
        "owner_name": "Marco",
    },
    {
        "title": "Exporting Reports to CSV",
        "content": "Any report can be exported from the toolbar. Exports over 50,000 rows are emailed as a "
                   "zipped CSV once ready.",
        "ai_summary": "CSV export for reports, including large exports.",
        "tags": ["reports", "export"],
        "owner_name": "Dana",
    },
    {
        "title": "Single Sign-On Configuration",
        "content": "SSO supports SAML 2.0 and OIDC. Configure your identity provider with the ACS URL shown "
                   "under Settings > Security, then upload the IdP metadata file.",
        "ai_summary": "Setting up SAML or OIDC single sign-on.",
        "tags": ["security", "sso"],
        "owner_name": "Priya",
    },
    {
        "title": "API Rate Limits (draft)",
        "content": "Work in progress.",
        "tags": ["api"],
        "status": "draft",
        "owner_name": "Priya",
    },
]

DEMO_QAS: list[dict] = [
    {
        "question": "How do I reset my password?",
        "answer": "Use the 'Forgot password' link on the sign-in page. Reset links expire after 30 minutes.",
        "tags": ["account", "password"],
        "status": "approved",
        "owner_name": "Dana",
    },
    {
        "question": "Can I change the billing contact?",
        "answer": "Yes. Admins can change it under Settings > Billing > Contact.",
        "tags": ["billing"],
        "status": "approved",
        "owner_name": "Marco",
    },
    {
        "question": "Do you support SCIM provisioning?",
        "answer": "SCIM is available on the Enterprise plan for Okta and Azure AD.",
        "tags": ["security", "sso"],
        "status": "approved",
        "owner_name": "Priya",
    },
    {
        "question": "Is there a mobile app?",
        "answer": "Not yet.",
        "tags": ["mobile"],
        "status": "pending_review",
        "owner_name": "Marco",
    },
]

# (days ago, user, question, confidence, escalation target, context)
DEMO_INTERACTIONS: list[tuple] = [
    (1, "u-100", "How do I cancel my subscription today", "low", None, {"urgency": "high", "tags": ["billing"]}),
    (2, "u-101", "How do I cancel my subscription today", "low", "billing-team", {"customer_type": "smb"}),
    (3, "u-102", "How do I cancel my subscription today", "low", None, None),
    (2, "u-103", "How do I cancel my subscription now", "low", None, {"tags": ["billing"]}),
    (5, "u-104", "How do I cancel my subscription now", "medium", "billing-team", None),
    (1, "u-105", "Where is my invoice", "low", "billing-team", None),
    (4, "u-106", "Refund policy for annual plans?", "low", None, {"tags": ["billing", "refunds"]}),
    (6, "u-107", "Refund policy for annual plans?", "low", "support-lead", None),
    (9, "u-108", "Refund policy for annual plans?", "medium", None, "{not json"),
    (3, "u-100", "Export reports to Google Sheets", "low", None, {"tags": ["reports"]}),
    (7, "u-109", "Export reports to Google Sheets", "low", None, None),
    (2, "u-110", "How do I reset my password?", "high", None, {"tags": ["account"]}),
    (8, "u-111", "Configure SAML with Okta", "high", None, {"tags": ["sso"]}),
    (12, "u-112", "Webhook retries after failures", "low", "platform-team", {"tags": ["api"]}),
    (15, "u-113", "Webhook retries after failures", "low", None, None),
    (45, "u-114", "Webhook retries after failures", "low", None, None),
]

DEMO_GAPS: list[dict] = [
    {
        "topic": "data retention",
        "description": "How long deleted workspaces and exports are kept before permanent removal.",
        "suggested_tags": ["compliance", "data"],
        "frequency": 4,
        "query_examples": ["How long do you keep deleted data?", "Data retention period for exports"],
        "priority": "medium",
        "status": "in_progress",
        "suggested_content_type": "document",
        "confidence_scores": ["low"],
        "assigned_to": "Priya",
    },
    {
        "topic": "mobile app",
        "description": "Questions about a native mobile client.",
        "suggested_tags": ["mobile"],
        "frequency": 2,
        "query_examples": ["Is there an iOS app?", "Android app download"],
        "priority": "low",
        "status": "dismissed",
        "suggested_content_type": "qa",
        "confidence_scores": ["low"],
        "dismissed_reason": "Not on the roadmap this year",
    },
]


async def seed_demo_data(now: datetime | None = None) -> dict[str, int]:
    """Insert the demo dataset unless the knowledge base already has documents.

    Returns counts of inserted records per kind (all zero when skipped).
    """
    counts = {"documents": 0, "qas": 0, "interactions": 0, "gaps": 0}
    if await db.count("Document"):
        return counts

    now = now or datetime.now(timezone.utc)
    for doc in DEMO_DOCUMENTS:
        await db.create("Document", doc)
        counts["documents"] += 1
    for qa in DEMO_QAS:
        await db.create("CuratedQA", qa)
        counts["qas"] += 1
    for days_ago, user_id, question, confidence, escalation, context in DEMO_INTERACTIONS:
        await db.log_interaction(
            question,
            confidence=confidence,
            escalation_target=escalation,
            context=context,
            user_id=user_id,
            created_at=now - timedelta(days=days_ago, minutes=len(question)),
        )
        counts["interactions"] += 1
    for gap in DEMO_GAPS:
        await db.create("ContentGap", {**gap, "updated_by": "system"})
        counts["gaps"] += 1
    return counts
