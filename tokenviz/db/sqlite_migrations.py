"""Database schema creation and versioning.

All CREATE TABLE statements for the usage store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("tokenviz.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Raw usage records (one per model invocation) ────────────────
CREATE TABLE IF NOT EXISTS usage_records (
    record_id             TEXT PRIMARY KEY,
    scan_order            INTEGER NOT NULL,
    session_id            TEXT NOT NULL,
    timestamp             TEXT NOT NULL DEFAULT '',
    model                 TEXT NOT NULL DEFAULT 'unknown',
    input_tokens          INTEGER NOT NULL DEFAULT 0,
    output_tokens         INTEGER NOT NULL DEFAULT 0,
    cache_created_tokens  INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens     INTEGER NOT NULL DEFAULT 0,
    request_id            TEXT,
    message_id            TEXT,
    role                  TEXT,
    working_directory     TEXT
);

CREATE INDEX IF NOT EXISTS idx_usage_session   ON usage_records(session_id);
CREATE INDEX IF NOT EXISTS idx_usage_timestamp ON usage_records(timestamp, scan_order);
CREATE INDEX IF NOT EXISTS idx_usage_model     ON usage_records(model);

-- ── 2. Derived per-session totals ──────────────────────────────────
CREATE TABLE IF NOT EXISTS session_aggregates (
    session_id            TEXT PRIMARY KEY,
    representative_path   TEXT NOT NULL DEFAULT '',
    first_timestamp       TEXT NOT NULL DEFAULT '',
    last_timestamp        TEXT NOT NULL DEFAULT '',
    message_count         INTEGER NOT NULL DEFAULT 0,
    input_tokens          INTEGER NOT NULL DEFAULT 0,
    output_tokens         INTEGER NOT NULL DEFAULT 0,
    cache_created_tokens  INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens     INTEGER NOT NULL DEFAULT 0
);

-- ── 3. Derived per-model totals ────────────────────────────────────
CREATE TABLE IF NOT EXISTS model_aggregates (
    model                 TEXT PRIMARY KEY,
    message_count         INTEGER NOT NULL DEFAULT 0,
    input_tokens          INTEGER NOT NULL DEFAULT 0,
    output_tokens         INTEGER NOT NULL DEFAULT 0,
    cache_created_tokens  INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens     INTEGER NOT NULL DEFAULT 0
);

-- ── 4. Last rebuild metadata ───────────────────────────────────────
CREATE TABLE IF NOT EXISTS ingest_state (
    id            INTEGER PRIMARY KEY CHECK (id = 1),
    ingested_at   TEXT NOT NULL,
    record_count  INTEGER NOT NULL DEFAULT 0,
    source        TEXT NOT NULL DEFAULT ''
);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables and record the schema version (idempotent)."""
    await db.executescript(_TABLES)

    async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
        row = await cur.fetchone()
    current = row[0] if row and row[0] is not None else 0
    if current >= SCHEMA_VERSION:
        logger.info(f"Schema up to date (version {current})")
        return

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
