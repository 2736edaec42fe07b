"""Local skill metadata cache and content-hash version log."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Callable, Iterable, Optional

from skillsync.modules.storage import Database, Row
from skillsync.shared.types import from_iso, to_iso, utc_now

from ..public.types import LocalSkill, RemoteSkill

# Bound on the IN (...) list per statement
_CHUNK = 500


def _chunks(items: list[str], size: int = _CHUNK) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SkillRepository:
    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def get(self, skill_id: str) -> Optional[LocalSkill]:
        row = self.db.fetch_one("SELECT * FROM skills WHERE id = ?", (skill_id,))
        return self._to_model(row) if row else None

    def list_ids(self) -> set[str]:
        return {row["id"] for row in self.db.fetch_all("SELECT id FROM skills")}

    def list_all(self, limit: int = 100, offset: int = 0) -> list[LocalSkill]:
        rows = self.db.fetch_all(
            "SELECT * FROM skills ORDER BY id LIMIT ? OFFSET ?", (limit, offset)
        )
        return [self._to_model(row) for row in rows]

    def count(self) -> int:
        row = self.db.fetch_one("SELECT COUNT(*) AS n FROM skills")
        return row["n"] if row else 0

    def get_hashes(self, ids: Iterable[str]) -> dict[str, str]:
        """Map id -> content_hash for the ids that exist locally."""
        hashes: dict[str, str] = {}
        for chunk in _chunks(list(ids)):
            placeholders = ",".join("?" for _ in chunk)
            rows = self.db.fetch_all(
                f"SELECT id, content_hash FROM skills WHERE id IN ({placeholders})",
                chunk,
            )
            for row in rows:
                hashes[row["id"]] = row["content_hash"]
        return hashes

    def upsert_many(self, skills: Iterable[RemoteSkill]) -> int:
        """Insert or replace rows; runs inside the caller's transaction if any."""
        synced_at = to_iso(self.clock())
        count = 0
        statement = self.db.prepare(
            """
            INSERT INTO skills (
                id, name, description, author, repo_url, tags, quality_score,
                trust_tier, content_hash, remote_updated_at, synced_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                author = excluded.author,
                repo_url = excluded.repo_url,
                tags = excluded.tags,
                quality_score = excluded.quality_score,
                trust_tier = excluded.trust_tier,
                content_hash = excluded.content_hash,
                remote_updated_at = excluded.remote_updated_at,
                synced_at = excluded.synced_at
            """
        )
        for skill in skills:
            statement.run(
                skill.id,
                skill.name,
                skill.description,
                skill.author,
                skill.repo_url,
                json.dumps(skill.tags, ensure_ascii=False),
                skill.quality_score,
                skill.trust_tier,
                skill.content_hash,
                to_iso(skill.updated_at),
                synced_at,
            )
            count += 1
        return count

    def delete_many(self, ids: Iterable[str]) -> int:
        removed = 0
        for chunk in _chunks(list(ids)):
            placeholders = ",".join("?" for _ in chunk)
            result = self.db.execute(
                f"DELETE FROM skills WHERE id IN ({placeholders})", chunk
            )
            removed += result.changes
        return removed

    @staticmethod
    def _to_model(row: Row) -> LocalSkill:
        return LocalSkill(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            author=row["author"],
            repo_url=row["repo_url"],
            tags=json.loads(row["tags"] or "[]"),
            quality_score=row["quality_score"],
            trust_tier=row["trust_tier"],
            content_hash=row["content_hash"],
            remote_updated_at=from_iso(row["remote_updated_at"]),
            synced_at=from_iso(row["synced_at"]),
        )


class SkillVersionRepository:
    """Content hash recorded after every successful upsert.

    Rows are a soft reference to ``skills``; history outlives removal.
    """

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def record_version(self, skill_id: str, content_hash: str, keep: int = 50) -> None:
        """Make ``content_hash`` the latest version, even when seen before."""
        if self.get_latest_version(skill_id) == content_hash:
            return
        with self.db.transaction():
            # One row per (skill, hash): a hash coming back moves to the top.
            self.db.execute(
                "DELETE FROM skill_versions WHERE skill_id = ? AND content_hash = ?",
                (skill_id, content_hash),
            )
            self.db.execute(
                """
                INSERT INTO skill_versions (skill_id, content_hash, recorded_at)
                VALUES (?, ?, ?)
                """,
                (skill_id, content_hash, to_iso(self.clock())),
            )
            self.prune_versions(skill_id, keep)

    def prune_versions(self, skill_id: str, keep: int = 50) -> int:
        result = self.db.execute(
            """
            DELETE FROM skill_versions
             WHERE skill_id = ?
               AND id NOT IN (
                   SELECT id FROM skill_versions WHERE skill_id = ?
                    ORDER BY recorded_at DESC, id DESC LIMIT ?
               )
            """,
            (skill_id, skill_id, keep),
        )
        return result.changes

    def get_latest_version(self, skill_id: str) -> Optional[str]:
        row = self.db.fetch_one(
            """
            SELECT content_hash FROM skill_versions WHERE skill_id = ?
             ORDER BY recorded_at DESC, id DESC LIMIT 1
            """,
            (skill_id,),
        )
        return row["content_hash"] if row else None

    def get_version_history(self, skill_id: str, limit: int = 10) -> list[tuple[str, datetime]]:
        rows = self.db.fetch_all(
            """
            SELECT content_hash, recorded_at FROM skill_versions WHERE skill_id = ?
             ORDER BY recorded_at DESC, id DESC LIMIT ?
            """,
            (skill_id, limit),
        )
        return [(row["content_hash"], from_iso(row["recorded_at"])) for row in rows]
