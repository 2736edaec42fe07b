"""Unit tests for sync scheduling preferences."""

from datetime import datetime, timedelta, timezone

import pytest

from skillsync.modules.storage import create_database
from skillsync.modules.sync import FREQUENCY_INTERVALS_MS, SyncConfigRepository
from skillsync.shared.errors import InvalidArgumentError

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
DAY = timedelta(milliseconds=FREQUENCY_INTERVALS_MS["daily"])
WEEK = timedelta(milliseconds=FREQUENCY_INTERVALS_MS["weekly"])


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db(tmp_path):
    database = create_database(tmp_path / "sync.db")
    yield database
    database.close()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def repo(db, clock):
    return SyncConfigRepository(db, clock=clock)


class TestDefaults:
    def test_defaults_created_on_first_read(self, repo):
        config = repo.get_config()
        assert config.enabled is True
        assert config.frequency == "daily"
        assert config.interval_ms == 86_400_000
        assert config.last_sync_at is None
        assert config.next_sync_at is None
        assert config.created_at == T0

    def test_due_check_does_not_create_row(self, repo, db):
        """Reading due-ness is free of side effects."""
        assert repo.is_sync_due() is True
        assert db.fetch_one("SELECT COUNT(*) AS n FROM sync_config")["n"] == 0

    def test_single_row(self, repo, db):
        repo.get_config()
        repo.get_config()
        repo.enable()
        assert db.fetch_one("SELECT COUNT(*) AS n FROM sync_config")["n"] == 1


class TestIsSyncDue:
    def test_due_when_never_synced(self, repo):
        assert repo.is_sync_due() is True

    def test_boundary_exactly_interval(self, repo):
        """now == last_sync_at + interval counts as due."""
        repo.set_last_sync(T0)
        assert repo.is_sync_due(T0 + DAY) is True

    def test_one_millisecond_before_interval(self, repo):
        repo.set_last_sync(T0)
        assert repo.is_sync_due(T0 + DAY - timedelta(milliseconds=1)) is False

    def test_uses_injected_clock(self, repo, clock):
        repo.set_last_sync(T0)
        clock.now = T0 + timedelta(hours=23)
        assert repo.is_sync_due() is False
        clock.now = T0 + timedelta(hours=25)
        assert repo.is_sync_due() is True

    def test_weekly_interval(self, repo):
        repo.set_frequency("weekly")
        repo.set_last_sync(T0)
        assert repo.is_sync_due(T0 + DAY * 3) is False
        assert repo.is_sync_due(T0 + WEEK) is True

    def test_manual_never_due_after_first_sync(self, repo):
        repo.set_frequency("manual")
        assert repo.is_sync_due() is True
        repo.set_last_sync(T0)
        assert repo.is_sync_due(T0 + WEEK * 52) is False

    def test_naive_now_treated_as_utc(self, repo):
        repo.set_last_sync(T0)
        assert repo.is_sync_due((T0 + DAY).replace(tzinfo=None)) is True


class TestUpdates:
    def test_set_last_sync_derives_next_sync(self, repo):
        config = repo.set_last_sync(T0, count=12)
        assert config.last_sync_at == T0
        assert config.next_sync_at == T0 + DAY
        assert config.last_sync_count == 12

    def test_set_last_sync_clears_error(self, repo):
        repo.set_last_sync_error("registry down")
        assert repo.get_config().last_sync_error == "registry down"
        assert repo.set_last_sync(T0).last_sync_error is None

    def test_frequency_change_recomputes_schedule(self, repo):
        repo.set_last_sync(T0)
        config = repo.set_frequency("weekly")
        assert config.interval_ms == FREQUENCY_INTERVALS_MS["weekly"]
        assert config.next_sync_at == T0 + WEEK

    def test_manual_has_no_next_sync(self, repo):
        repo.set_last_sync(T0)
        config = repo.set_frequency("manual")
        assert config.interval_ms == 0
        assert config.next_sync_at is None
        assert repo.calculate_next_sync() is None

    def test_unknown_frequency_rejected(self, repo):
        with pytest.raises(InvalidArgumentError):
            repo.set_frequency("hourly")

    def test_enable_disable(self, repo):
        assert repo.disable().enabled is False
        assert repo.enable().enabled is True

    def test_calculate_next_sync_from_time(self, repo):
        start = T0 + timedelta(hours=3)
        assert repo.calculate_next_sync(start) == start + DAY

    def test_reset_restores_defaults(self, repo):
        repo.set_frequency("weekly")
        repo.disable()
        repo.set_last_sync(T0, count=3)
        config = repo.reset()
        assert config.enabled is True
        assert config.frequency == "daily"
        assert config.last_sync_at is None
        assert config.last_sync_count == 0

    def test_persists_across_repositories(self, db, clock):
        SyncConfigRepository(db, clock=clock).set_frequency("weekly")
        assert SyncConfigRepository(db, clock=clock).get_config().frequency == "weekly"
