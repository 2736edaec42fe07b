"""Integration-test-only pytest fixtures for SkillSync."""

from pathlib import Path

import pytest

from skillsync.modules.sync import RegistryPage, RemoteSkill
from skillsync.shared.errors import RegistryError


@pytest.fixture(autouse=True)
def _isolate_skillsync_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep integration tests away from ~/.skillsync.

    Config() without explicit paths would otherwise derive the database and
    index snapshot under the developer's home directory.
    """
    monkeypatch.setenv("SKILLSYNC_DB_PATH", str(tmp_path / "home" / "skillsync.db"))
    monkeypatch.delenv("SKILLSYNC_USE_HNSW", raising=False)


class StubRegistry:
    """In-process registry serving descriptors from a list."""

    def __init__(self, skills, *, offline=False, health="healthy", fail_offsets=None):
        self.skills = list(skills)
        self.offline = offline
        self.health = health
        # offset -> number of times to fail (-1 for always)
        self.fail_offsets = dict(fail_offsets or {})
        self.calls = []

    def is_offline(self):
        return self.offline

    def check_health(self):
        return self.health

    def list_skills(self, offset, limit, updated_since=None):
        self.calls.append((offset, limit))
        remaining = self.fail_offsets.get(offset, 0)
        if remaining:
            if remaining > 0:
                self.fail_offsets[offset] = remaining - 1
            raise RegistryError(f"HTTP 502 at offset {offset}", status_code=502)
        items = self.skills[offset : offset + limit]
        return RegistryPage(
            items=[RemoteSkill.model_validate(item) for item in items],
            total=len(self.skills),
            offset=offset,
            limit=limit,
        )


def make_skill(index: int, **extra) -> dict:
    return {
        "id": f"skill-{index}",
        "name": f"Skill {index}",
        "description": f"Does thing number {index}",
        "author": "acme",
        "tags": ["demo"],
        **extra,
    }


def fake_embed(text: str) -> list[float]:
    """Deterministic 4-d vector derived from the text."""
    digits = sum(int(ch) for ch in text if ch.isdigit())
    return [1.0, float(len(text) % 7), float(digits % 5), 0.5]


@pytest.fixture
def registry_factory():
    return StubRegistry


@pytest.fixture
def skills_factory():
    def build(count: int) -> list[dict]:
        return [make_skill(i) for i in range(count)]

    return build


@pytest.fixture
def embed_fn():
    return fake_embed
