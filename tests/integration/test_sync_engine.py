"""SyncEngine against a stub registry and a real database."""

import asyncio
from dataclasses import dataclass

import pytest

from skillsync.modules.embeddings import HNSWConfig, HNSWEmbeddingStore
from skillsync.modules.storage import Database, create_database
from skillsync.modules.sync import (
    SkillRepository,
    SkillVersionRepository,
    SyncConfigRepository,
    SyncEngine,
    SyncHistoryRepository,
    SyncOptions,
)
from skillsync.modules.sync.public.engine import OFFLINE_ERROR, UNHEALTHY_ERROR


@dataclass
class Harness:
    db: Database
    skills: SkillRepository
    versions: SkillVersionRepository
    config_repo: SyncConfigRepository
    history: SyncHistoryRepository
    store: HNSWEmbeddingStore

    def engine(self, registry, *, embed_fn=None, with_store=True, **kwargs):
        kwargs.setdefault("page_size", 2)
        kwargs.setdefault("max_retries", 1)
        kwargs.setdefault("retry_delay", 0)
        return SyncEngine(
            registry,
            self.skills,
            self.config_repo,
            self.history,
            versions=self.versions,
            embeddings=self.store if with_store else None,
            embed_fn=embed_fn,
            **kwargs,
        )


@pytest.fixture
def harness(tmp_path):
    db = create_database(tmp_path / "sync.db")
    store = asyncio.run(
        HNSWEmbeddingStore.create(database=db, config=HNSWConfig(dimensions=4), use_hnsw=False)
    )
    yield Harness(
        db=db,
        skills=SkillRepository(db),
        versions=SkillVersionRepository(db),
        config_repo=SyncConfigRepository(db),
        history=SyncHistoryRepository(db),
        store=store,
    )
    store.close()
    db.close()


def run(engine, **options):
    return asyncio.run(engine.sync(SyncOptions(**options)))


class TestFirstSync:
    def test_adds_every_skill(self, harness, registry_factory, skills_factory, embed_fn):
        registry = registry_factory(skills_factory(5))
        result = run(harness.engine(registry, embed_fn=embed_fn))

        assert result.success is True
        assert (result.skills_added, result.skills_updated, result.skills_unchanged) == (5, 0, 0)
        assert result.total_processed == 5
        assert harness.skills.count() == 5
        assert harness.store.count() == 5
        assert registry.calls == [(0, 2), (2, 2), (4, 2)]

        entry = harness.history.get_by_id(result.run_id)
        assert entry.status == "success"
        assert entry.added == 5
        config = harness.config_repo.get_config()
        assert config.last_sync_at is not None
        assert config.last_sync_count == 5
        assert harness.config_repo.is_sync_due() is False

    def test_local_skill_fields(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(1))
        run(harness.engine(registry))
        skill = harness.skills.get("skill-0")
        assert skill.name == "Skill 0"
        assert skill.tags == ["demo"]
        assert skill.content_hash.startswith("sha256:")
        assert harness.versions.get_latest_version("skill-0") == skill.content_hash


class TestIdempotence:
    def test_second_sync_changes_nothing(self, harness, registry_factory, skills_factory, embed_fn):
        registry = registry_factory(skills_factory(5))
        engine = harness.engine(registry, embed_fn=embed_fn)
        run(engine)
        second = run(engine)

        assert second.success is True
        assert (second.skills_added, second.skills_updated, second.skills_unchanged) == (0, 0, 5)
        assert second.skills_removed == 0
        assert harness.history.count() == 2

    def test_changed_hash_is_updated(self, harness, registry_factory, skills_factory, embed_fn):
        skills = skills_factory(4)
        registry = registry_factory(skills)
        engine = harness.engine(registry, embed_fn=embed_fn)
        run(engine)
        before = harness.store.get_embedding("skill-2")

        skills[2] = {**skills[2], "description": "A much longer rewritten description"}
        registry.skills = skills
        result = run(engine)

        assert (result.skills_added, result.skills_updated, result.skills_unchanged) == (0, 1, 3)
        assert harness.skills.get("skill-2").description == "A much longer rewritten description"
        assert len(harness.versions.get_version_history("skill-2")) == 2
        assert (harness.store.get_embedding("skill-2") != before).any()

    def test_force_reapplies_everything(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(3))
        engine = harness.engine(registry)
        run(engine)
        result = run(engine, force=True)
        assert (result.skills_updated, result.skills_unchanged) == (3, 0)

    def test_missing_embeddings_are_backfilled(
        self, harness, registry_factory, skills_factory, embed_fn
    ):
        registry = registry_factory(skills_factory(3))
        run(harness.engine(registry, with_store=False))
        assert harness.store.count() == 0

        result = run(harness.engine(registry, embed_fn=embed_fn))
        assert result.skills_unchanged == 3
        assert harness.store.count() == 3

    def test_duplicate_ids_across_pages(self, harness, registry_factory, skills_factory):
        skills = skills_factory(3)
        registry = registry_factory(skills + [skills[0]])
        result = run(harness.engine(registry))
        assert result.total_processed == 3
        assert result.skills_added == 3


class TestDryRun:
    def test_writes_nothing(self, harness, registry_factory, skills_factory, embed_fn):
        registry = registry_factory(skills_factory(5))
        result = run(harness.engine(registry, embed_fn=embed_fn), dry_run=True)

        assert result.dry_run is True
        assert result.success is True
        assert result.skills_added == 5
        assert result.run_id is None
        assert harness.skills.count() == 0
        assert harness.store.count() == 0
        assert harness.history.count() == 0
        assert harness.config_repo.get_config().last_sync_at is None

    def test_reports_removals_without_deleting(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(3))
        engine = harness.engine(registry)
        run(engine)
        registry.skills = registry.skills[:1]
        result = run(engine, dry_run=True)
        assert result.skills_removed == 2
        assert harness.skills.count() == 3


class TestRegistryUnavailable:
    @pytest.mark.parametrize(
        "kwargs, message",
        [({"offline": True}, OFFLINE_ERROR), ({"health": "unhealthy"}, UNHEALTHY_ERROR)],
    )
    def test_preflight_failure(self, harness, registry_factory, skills_factory, kwargs, message):
        registry = registry_factory(skills_factory(3), **kwargs)
        result = run(harness.engine(registry))

        assert result.success is False
        assert result.error == message
        assert registry.calls == []
        assert harness.skills.count() == 0
        entry = harness.history.list_recent(1)[0]
        assert entry.status == "failure"
        assert entry.error_message == message
        config = harness.config_repo.get_config()
        assert config.last_sync_at is None
        assert config.last_sync_error == message

    def test_degraded_registry_still_syncs(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(2), health="degraded")
        assert run(harness.engine(registry)).success is True

    def test_mid_run_failure_keeps_committed_pages(
        self, harness, registry_factory, skills_factory
    ):
        registry = registry_factory(skills_factory(5), fail_offsets={2: -1})
        result = run(harness.engine(registry))

        assert result.success is False
        assert "offset 2" in result.error
        assert result.skills_added == 2
        assert harness.skills.count() == 2
        assert registry.calls.count((2, 2)) == 2

        entry = harness.history.get_by_id(result.run_id)
        assert entry.status == "partial"
        config = harness.config_repo.get_config()
        assert config.last_sync_at is None
        assert config.last_sync_error is not None
        assert harness.config_repo.is_sync_due() is True

    def test_failure_before_any_page_is_failure(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(3), fail_offsets={0: -1})
        result = run(harness.engine(registry))
        assert harness.history.get_by_id(result.run_id).status == "failure"

    def test_transient_failure_is_retried(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(5), fail_offsets={2: 1})
        result = run(harness.engine(registry))
        assert result.success is True
        assert result.skills_added == 5

    def test_previous_run_left_open_is_closed(self, harness, registry_factory, skills_factory):
        stale = harness.history.start_run()
        run(harness.engine(registry_factory(skills_factory(1))))
        assert harness.history.get_by_id(stale).status == "failure"
        assert harness.history.is_running() is False


class TestRemoval:
    def test_skill_gone_from_registry_is_removed(
        self, harness, registry_factory, skills_factory, embed_fn
    ):
        registry = registry_factory(skills_factory(5))
        engine = harness.engine(registry, embed_fn=embed_fn)
        run(engine)

        registry.skills = registry.skills[:4]
        result = run(engine)

        assert result.skills_removed == 1
        assert harness.skills.get("skill-4") is None
        assert harness.store.has_embedding("skill-4") is False
        assert harness.history.get_by_id(result.run_id).removed == 1

    def test_incomplete_listing_removes_nothing(self, harness, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(5))
        engine = harness.engine(registry)
        run(engine)

        registry.skills = registry.skills[:3]
        registry.fail_offsets = {2: -1}
        result = run(engine)

        assert result.skills_removed == 0
        assert harness.skills.count() == 5


class TestEmbeddingFailures:
    def test_failed_item_not_written_and_retried(
        self, harness, registry_factory, skills_factory, embed_fn
    ):
        def flaky(text):
            if "Skill 2" in text:
                raise RuntimeError("provider timeout")
            return embed_fn(text)

        registry = registry_factory(skills_factory(4))
        result = run(harness.engine(registry, embed_fn=flaky))

        assert result.success is True
        assert result.skills_failed == 1
        assert result.skills_added == 3
        assert any("skill-2" in err for err in result.errors)
        assert harness.skills.get("skill-2") is None
        assert harness.history.get_by_id(result.run_id).status == "partial"

        retry = run(harness.engine(registry, embed_fn=embed_fn))
        assert retry.skills_added == 1
        assert retry.skills_failed == 0
        assert harness.store.has_embedding("skill-2")

    def test_vector_rejected_by_store_fails_item(
        self, harness, registry_factory, skills_factory, embed_fn
    ):
        def short_for_skill_1(text):
            if "Skill 1" in text:
                return [1.0, 2.0]
            return embed_fn(text)

        registry = registry_factory(skills_factory(3))
        result = run(harness.engine(registry, embed_fn=short_for_skill_1))

        assert result.skills_added == 2
        assert result.skills_failed == 1
        assert any(err.startswith("skill-1:") for err in result.errors)
        assert harness.skills.get("skill-1") is None
        assert not harness.store.has_embedding("skill-1")
        assert harness.store.has_embedding("skill-0")


class TestProgressAndConcurrency:
    def test_progress_phases(self, harness, registry_factory, skills_factory):
        events = []
        registry = registry_factory(skills_factory(3))
        run(harness.engine(registry), on_progress=events.append)

        phases = [event.phase for event in events]
        assert phases[0] == "connecting"
        assert phases[-1] == "complete"
        assert {"fetching", "comparing", "upserting"} <= set(phases)

    def test_progress_callback_errors_ignored(self, harness, registry_factory, skills_factory):
        def explode(_):
            raise RuntimeError("ui crashed")

        registry = registry_factory(skills_factory(2))
        assert run(harness.engine(registry), on_progress=explode).success is True

    def test_concurrent_call_is_rejected(self, harness, registry_factory, skills_factory):
        engine = harness.engine(registry_factory(skills_factory(3)))

        async def both():
            return await asyncio.gather(engine.sync(), engine.sync())

        first, second = asyncio.run(both())
        assert first.success is True
        assert second.success is False
        assert second.error == "Sync already in progress"
        assert harness.history.count() == 1

    def test_status(self, harness, registry_factory, skills_factory):
        engine = harness.engine(registry_factory(skills_factory(2)))
        assert engine.get_status().last_run is None
        result = run(engine)
        status = engine.get_status()
        assert status.last_run.run_id == result.run_id
        assert status.is_running is False
        assert status.is_due is False
