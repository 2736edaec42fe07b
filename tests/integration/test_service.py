"""End-to-end: service facade wiring storage, sync, scheduler and search."""

import asyncio

import pytest

from skillsync.interfaces import SkillSyncService
from skillsync.shared.config import Config
from skillsync.shared.errors import InvalidArgumentError


@pytest.fixture
def config(tmp_path):
    return Config(
        db_path=tmp_path / "svc" / "skillsync.db",
        use_hnsw=False,
        embedding_dimensions=4,
        sync_page_size=2,
        sync_on_start=False,
        sync_check_interval_seconds=0.01,
    )


class TestManualFlow:
    def test_sync_then_search(self, config, registry_factory, skills_factory, embed_fn):
        registry = registry_factory(skills_factory(5))

        async def scenario():
            async with await SkillSyncService.create(
                config, registry=registry, embed_fn=embed_fn
            ) as service:
                result = await service.trigger_manual_sync()
                hits = service.search(embed_fn("Skill 3: Does thing number 3"), 3)
                text_hits = await service.search_text("Skill 3: Does thing number 3", 3)
                skill = service.get_skill("skill-3")
                status = service.get_sync_status()
                return result, hits, text_hits, skill, status

        result, hits, text_hits, skill, status = asyncio.run(scenario())

        assert result.success is True
        assert result.skills_added == 5
        assert len(hits) == 3
        assert hits[0].score == pytest.approx(1.0)
        assert hits == text_hits
        assert skill.name == "Skill 3"
        assert status.last_sync_at is not None
        assert status.is_due is False
        assert status.is_running is False
        assert [entry.run_id for entry in status.recent_history] == [result.run_id]

    def test_state_survives_restart(self, config, registry_factory, skills_factory, embed_fn):
        registry = registry_factory(skills_factory(3))

        async def first():
            service = await SkillSyncService.create(config, registry=registry, embed_fn=embed_fn)
            try:
                await service.trigger_manual_sync()
            finally:
                await service.close()

        async def second():
            async with await SkillSyncService.create(
                config, registry=registry, embed_fn=embed_fn
            ) as service:
                return service.skills.count(), service.store.count(), service.get_sync_status()

        asyncio.run(first())
        skills, vectors, status = asyncio.run(second())
        assert (skills, vectors) == (3, 3)
        assert status.last_sync_at is not None
        assert len(status.recent_history) == 1

    def test_snapshot_driver(self, config, registry_factory, skills_factory, embed_fn):
        snapshot_config = config.with_overrides(db_driver="snapshot")
        registry = registry_factory(skills_factory(2))

        async def scenario():
            async with await SkillSyncService.create(
                snapshot_config, registry=registry, embed_fn=embed_fn
            ) as service:
                await service.trigger_manual_sync()
            async with await SkillSyncService.create(
                snapshot_config, registry=registry, embed_fn=embed_fn
            ) as service:
                return service.database.driver, service.skills.count()

        assert asyncio.run(scenario()) == ("snapshot", 2)

    def test_text_search_requires_provider(self, config, registry_factory):
        async def scenario():
            async with await SkillSyncService.create(
                config, registry=registry_factory([])
            ) as service:
                await service.search_text("anything")

        with pytest.raises(InvalidArgumentError):
            asyncio.run(scenario())


class TestBackground:
    def test_start_syncs_when_due(self, config, registry_factory, skills_factory, embed_fn):
        registry = registry_factory(skills_factory(4))

        async def scenario():
            async with await SkillSyncService.create(
                config.with_overrides(sync_on_start=True), registry=registry, embed_fn=embed_fn
            ) as service:
                await service.start()
                loop = asyncio.get_running_loop()
                deadline = loop.time() + 5
                while service.get_sync_status().last_sync_at is None:
                    assert loop.time() < deadline, "background sync did not run"
                    await asyncio.sleep(0.01)
                return service.skills.count(), service.background.get_state()

        count, state = asyncio.run(scenario())
        assert count == 4
        assert state.syncs_triggered >= 1

    def test_disabled_sync_never_runs(self, config, registry_factory, skills_factory):
        registry = registry_factory(skills_factory(2))

        async def scenario():
            async with await SkillSyncService.create(config, registry=registry) as service:
                service.config_repo.disable()
                await service.start()
                await asyncio.sleep(0.05)
                return service.background.is_service_started(), service.skills.count()

        assert asyncio.run(scenario()) == (False, 0)
        assert registry.calls == []
