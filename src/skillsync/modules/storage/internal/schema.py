"""Table definitions. Every statement is idempotent."""

from __future__ import annotations

from ..public.types import Database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS skills (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    author TEXT,
    repo_url TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    quality_score REAL,
    trust_tier TEXT,
    content_hash TEXT NOT NULL,
    remote_updated_at TEXT,
    synced_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS skill_versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    skill_id TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    UNIQUE (skill_id, content_hash)
);
CREATE INDEX IF NOT EXISTS idx_skill_versions_skill
    ON skill_versions (skill_id, recorded_at DESC);

CREATE TABLE IF NOT EXISTS skill_embeddings (
    skill_id TEXT PRIMARY KEY,
    embedding BLOB NOT NULL,
    dimensions INTEGER NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS embedding_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_config (
    id TEXT PRIMARY KEY DEFAULT 'default',
    enabled INTEGER NOT NULL DEFAULT 1,
    frequency TEXT NOT NULL DEFAULT 'daily'
        CHECK (frequency IN ('daily', 'weekly', 'manual')),
    interval_ms INTEGER NOT NULL DEFAULT 86400000,
    last_sync_at TEXT,
    next_sync_at TEXT,
    last_sync_count INTEGER NOT NULL DEFAULT 0,
    last_sync_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_history (
    id TEXT PRIMARY KEY,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL DEFAULT 'running'
        CHECK (status IN ('running', 'success', 'failure', 'partial')),
    skills_added INTEGER NOT NULL DEFAULT 0,
    skills_updated INTEGER NOT NULL DEFAULT 0,
    skills_unchanged INTEGER NOT NULL DEFAULT 0,
    skills_failed INTEGER NOT NULL DEFAULT 0,
    skills_removed INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    duration_ms INTEGER
);
CREATE INDEX IF NOT EXISTS idx_sync_history_started
    ON sync_history (started_at DESC);
CREATE INDEX IF NOT EXISTS idx_sync_history_status
    ON sync_history (status);
"""


def initialize_schema(db: Database) -> None:
    if db.readonly:
        return
    db.executescript(SCHEMA_SQL)
    if (db.pragma("user_version", simple=True) or 0) < SCHEMA_VERSION:
        db.pragma(f"user_version = {SCHEMA_VERSION}")
