"""SQLite knowledge store and interaction log using aiosqlite.

Documents, curated Q&A and content gaps are exposed through one generic
create / get / filter / update contract so the gap and search logic never
touches SQL. Interaction events are append-only.
"""

import json
from datetime import datetime, timezone

import aiosqlite

from config import settings
from errors import ConflictError

DB_PATH = settings.DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    ai_summary TEXT NOT NULL DEFAULT '',
    tags TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'active',
    owner_name TEXT NOT NULL DEFAULT '',
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS curated_qas (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    question TEXT NOT NULL,
    answer TEXT NOT NULL DEFAULT '',
    tags TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'pending_review',
    owner_name TEXT NOT NULL DEFAULT '',
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS content_gaps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    suggested_tags TEXT NOT NULL DEFAULT '[]',
    frequency INTEGER NOT NULL DEFAULT 1,
    query_examples TEXT NOT NULL DEFAULT '[]',
    priority TEXT NOT NULL DEFAULT 'low',
    status TEXT NOT NULL DEFAULT 'identified',
    suggested_content_type TEXT NOT NULL DEFAULT 'document',
    confidence_scores TEXT NOT NULL DEFAULT '[]',
    dismissed_reason TEXT NOT NULL DEFAULT '',
    assigned_to TEXT NOT NULL DEFAULT '',
    updated_by TEXT NOT NULL DEFAULT '',
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS interaction_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    input TEXT NOT NULL DEFAULT '',
    output TEXT NOT NULL DEFAULT '',
    confidence TEXT,
    escalation_target TEXT,
    context_json TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS gap_attributions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gap_id INTEGER NOT NULL REFERENCES content_gaps(id),
    event_id INTEGER NOT NULL REFERENCES interaction_events(id),
    attributed_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(event_id)
);

CREATE TABLE IF NOT EXISTS recommendation_feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    item_type TEXT NOT NULL,
    item_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, item_type, item_id)
);

CREATE TABLE IF NOT EXISTS detection_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mode TEXT NOT NULL DEFAULT 'detect',
    status TEXT NOT NULL DEFAULT 'running',
    analyzed INTEGER NOT NULL DEFAULT 0,
    problematic INTEGER NOT NULL DEFAULT 0,
    patterns_found INTEGER NOT NULL DEFAULT 0,
    gaps_created INTEGER NOT NULL DEFAULT 0,
    gaps_updated INTEGER NOT NULL DEFAULT 0,
    failed_clusters INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL DEFAULT (datetime('now')),
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_interaction_events_created ON interaction_events(created_at);
CREATE INDEX IF NOT EXISTS idx_interaction_events_user ON interaction_events(user_id);
CREATE INDEX IF NOT EXISTS idx_content_gaps_status ON content_gaps(status);
"""

# Knowledge Store collection name -> table
COLLECTIONS = {
    "Document": "documents",
    "CuratedQA": "curated_qas",
    "ContentGap": "content_gaps",
}

_COLUMNS = {
    "documents": {"title", "content", "ai_summary", "tags", "status", "owner_name"},
    "curated_qas": {"question", "answer", "tags", "status", "owner_name"},
    "content_gaps": {
        "topic", "description", "suggested_tags", "frequency", "query_examples",
        "priority", "status", "suggested_content_type", "confidence_scores",
        "dismissed_reason", "assigned_to", "updated_by",
    },
}

_READ_ONLY_COLUMNS = {"id", "version", "created_at", "updated_at"}

_JSON_COLUMNS = {"tags", "suggested_tags", "query_examples", "confidence_scores"}

_EVENT_COLUMNS = {"id", "user_id", "input", "output", "confidence", "escalation_target", "context_json", "created_at"}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def format_timestamp(value: datetime | str | None) -> str:
    """Normalize a datetime or ISO string to the stored UTC format."""
    if value is None:
        return _now()
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp as an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _table(collection: str) -> str:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def _check_columns(table: str, names) -> None:
    allowed = _COLUMNS[table] | _READ_ONLY_COLUMNS
    unknown = [n for n in names if n not in allowed]
    if unknown:
        raise ValueError(f"Unknown field(s) for {table}: {', '.join(sorted(unknown))}")


def _encode(fields: dict) -> dict:
    encoded = {}
    for key, value in fields.items():
        if key in _JSON_COLUMNS:
            encoded[key] = json.dumps(list(value or []))
        else:
            encoded[key] = value
    return encoded


def _decode(row: aiosqlite.Row | None) -> dict | None:
    if row is None:
        return None
    data = dict(row)
    for key in _JSON_COLUMNS & data.keys():
        try:
            data[key] = json.loads(data[key] or "[]")
        except (TypeError, json.JSONDecodeError):
            data[key] = []
    return data


def _order_clause(order: str | None, allowed: set[str]) -> str:
    if not order:
        return " ORDER BY id ASC"
    desc = order.startswith("-")
    field = order.lstrip("-+")
    if field not in allowed:
        raise ValueError(f"Cannot order by {field}")
    direction = "DESC" if desc else "ASC"
    return f" ORDER BY {field} {direction}, id {direction}"


async def get_db() -> aiosqlite.Connection:
    """Open a database connection with row factory enabled."""
    db = await aiosqlite.connect(DB_PATH)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def init_db() -> None:
    """Initialize database schema."""
    db = await get_db()
    try:
        await db.executescript(SCHEMA)
        await db.commit()
    finally:
        await db.close()


# --------------- Knowledge Store (generic contract) ---------------

async def create(collection: str, fields: dict) -> dict:
    """Insert a record into a collection and return it."""
    table = _table(collection)
    _check_columns(table, fields)
    values = _encode({k: v for k, v in fields.items() if k not in _READ_ONLY_COLUMNS})
    now = _now()
    values["created_at"] = now
    values["updated_at"] = now
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    db = await get_db()
    try:
        cursor = await db.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
        await db.commit()
        row = await (await db.execute(f"SELECT * FROM {table} WHERE id = ?", (cursor.lastrowid,))).fetchone()
        return _decode(row)
    finally:
        await db.close()


async def get(collection: str, entity_id: int) -> dict | None:
    table = _table(collection)
    db = await get_db()
    try:
        row = await (await db.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))).fetchone()
        return _decode(row)
    finally:
        await db.close()


async def filter_entities(
    collection: str,
    order: str | None = None,
    limit: int | None = None,
    **criteria: object,
) -> list[dict]:
    """Return records matching every criterion.

    A list/tuple/set value matches any of its members; anything else must be equal.
    """
    table = _table(collection)
    _check_columns(table, criteria)
    sql = f"SELECT * FROM {table} WHERE 1=1"
    params: list = []
    for field, value in criteria.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                return []
            sql += f" AND {field} IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        else:
            sql += f" AND {field} = ?"
            params.append(value)
    sql += _order_clause(order, _COLUMNS[table] | _READ_ONLY_COLUMNS)
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    db = await get_db()
    try:
        rows = await (await db.execute(sql, params)).fetchall()
        return [_decode(r) for r in rows]
    finally:
        await db.close()


async def update(
    collection: str,
    entity_id: int,
    fields: dict,
    expected_version: int | None = None,
) -> dict | None:
    """Update a record and bump its version.

    With ``expected_version`` the write only applies if the stored version still
    matches; otherwise ConflictError is raised. Returns None if the record does
    not exist.
    """
    table = _table(collection)
    _check_columns(table, fields)
    values = _encode({k: v for k, v in fields.items() if k not in _READ_ONLY_COLUMNS})
    values["updated_at"] = _now()
    sets = ", ".join(f"{k} = ?" for k in values) + ", version = version + 1"
    sql = f"UPDATE {table} SET {sets} WHERE id = ?"
    params = list(values.values()) + [entity_id]
    if expected_version is not None:
        sql += " AND version = ?"
        params.append(expected_version)
    db = await get_db()
    try:
        cursor = await db.execute(sql, params)
        await db.commit()
        row = await (await db.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))).fetchone()
        if row is None:
            return None
        if cursor.rowcount == 0 and expected_version is not None:
            raise ConflictError(collection, entity_id, expected_version)
        return _decode(row)
    finally:
        await db.close()


async def count(collection: str, **criteria: object) -> int:
    table = _table(collection)
    _check_columns(table, criteria)
    sql = f"SELECT COUNT(*) AS cnt FROM {table} WHERE 1=1"
    params: list = []
    for field, value in criteria.items():
        sql += f" AND {field} = ?"
        params.append(value)
    db = await get_db()
    try:
        row = await (await db.execute(sql, params)).fetchone()
        return row["cnt"] if row else 0
    finally:
        await db.close()


# --------------- Interaction Log ---------------

async def log_interaction(
    input: str,
    confidence: str | None = None,
    escalation_target: str | None = None,
    context: dict | str | None = None,
    user_id: str | None = None,
    output: str = "",
    created_at: datetime | str | None = None,
) -> dict:
    """Append an interaction event. A string context is stored verbatim, even if malformed."""
    if isinstance(context, dict):
        context_json = json.dumps(context)
    else:
        context_json = context
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO interaction_events
               (user_id, input, output, confidence, escalation_target, context_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (user_id, input, output, confidence, escalation_target, context_json,
             format_timestamp(created_at)),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM interaction_events WHERE id = ?", (cursor.lastrowid,))).fetchone()
        return dict(row)
    finally:
        await db.close()


async def list_interactions(order: str = "-created_at", limit: int = 500) -> list[dict]:
    db = await get_db()
    try:
        sql = "SELECT * FROM interaction_events" + _order_clause(order, _EVENT_COLUMNS) + " LIMIT ?"
        rows = await (await db.execute(sql, (limit,))).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def count_interactions(**criteria: object) -> int:
    sql = "SELECT COUNT(*) AS cnt FROM interaction_events WHERE 1=1"
    params: list = []
    for field, value in criteria.items():
        if field not in _EVENT_COLUMNS:
            raise ValueError(f"Unknown field for interaction_events: {field}")
        sql += f" AND {field} = ?"
        params.append(value)
    db = await get_db()
    try:
        row = await (await db.execute(sql, params)).fetchone()
        return row["cnt"] if row else 0
    finally:
        await db.close()


async def filter_interactions(
    user_id: str | None = None,
    confidence: str | None = None,
    since: datetime | str | None = None,
    order: str = "-created_at",
    limit: int | None = None,
) -> list[dict]:
    db = await get_db()
    try:
        sql = "SELECT * FROM interaction_events WHERE 1=1"
        params: list = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if confidence is not None:
            sql += " AND confidence = ?"
            params.append(confidence)
        if since is not None:
            sql += " AND created_at > ?"
            params.append(format_timestamp(since))
        sql += _order_clause(order, _EVENT_COLUMNS)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await (await db.execute(sql, params)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


# --------------- Gap Attributions ---------------

async def record_attributions(gap_id: int, event_ids: list[int]) -> int:
    """Record which events were folded into a gap. Already-attributed events are ignored."""
    if not event_ids:
        return 0
    db = await get_db()
    try:
        cursor = await db.executemany(
            "INSERT OR IGNORE INTO gap_attributions (gap_id, event_id) VALUES (?, ?)",
            [(gap_id, eid) for eid in event_ids],
        )
        await db.commit()
        return cursor.rowcount
    finally:
        await db.close()


async def attributed_event_ids() -> set[int]:
    db = await get_db()
    try:
        rows = await (await db.execute("SELECT event_id FROM gap_attributions")).fetchall()
        return {r["event_id"] for r in rows}
    finally:
        await db.close()


async def list_attributions(gap_id: int) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            "SELECT * FROM gap_attributions WHERE gap_id = ? ORDER BY id ASC", (gap_id,)
        )).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


# --------------- Recommendation Feedback ---------------

async def mark_not_relevant(user_id: str, item_type: str, item_id: int) -> dict:
    db = await get_db()
    try:
        await db.execute(
            "INSERT OR IGNORE INTO recommendation_feedback (user_id, item_type, item_id) VALUES (?, ?, ?)",
            (user_id, item_type, item_id),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM recommendation_feedback WHERE user_id = ? AND item_type = ? AND item_id = ?",
            (user_id, item_type, item_id),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def not_relevant_items(user_id: str) -> set[tuple[str, int]]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            "SELECT item_type, item_id FROM recommendation_feedback WHERE user_id = ?", (user_id,)
        )).fetchall()
        return {(r["item_type"], r["item_id"]) for r in rows}
    finally:
        await db.close()


# --------------- Detection Runs ---------------

async def create_detection_run(mode: str = "detect") -> dict:
    db = await get_db()
    try:
        cursor = await db.execute(
            "INSERT INTO detection_runs (mode, started_at) VALUES (?, ?)", (mode, _now())
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM detection_runs WHERE id = ?", (cursor.lastrowid,))).fetchone()
        return dict(row)
    finally:
        await db.close()


async def update_detection_run(run_id: int, **kwargs: object) -> dict | None:
    db = await get_db()
    try:
        sets = ", ".join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values())
        vals.append(run_id)
        await db.execute(f"UPDATE detection_runs SET {sets} WHERE id = ?", vals)
        await db.commit()
        row = await (await db.execute("SELECT * FROM detection_runs WHERE id = ?", (run_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def list_detection_runs(limit: int = 20) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            "SELECT * FROM detection_runs ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
        )).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()
