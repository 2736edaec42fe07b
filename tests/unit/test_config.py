"""Unit tests for Config."""

from pathlib import Path

import pytest

from skillsync.shared.config import DEFAULT_DIMENSIONS, SKILLSYNC_HOME, Config


class TestConfigDefaults:
    """Config default value tests."""

    def test_db_path_default(self, monkeypatch):
        """SKILLSYNC_DB_PATH defaults to ~/.skillsync/skillsync.db."""
        monkeypatch.delenv("SKILLSYNC_DB_PATH", raising=False)
        cfg = Config()
        assert cfg.db_path == (SKILLSYNC_HOME / "skillsync.db").resolve()

    def test_index_path_derived_from_db_path(self, tmp_path):
        """Index snapshot sits next to the database when unset."""
        cfg = Config(db_path=tmp_path / "cache.db")
        assert cfg.get_index_path() == tmp_path.resolve() / "cache.hnsw"

    def test_sync_defaults(self, monkeypatch):
        """Page size, retries and check interval defaults."""
        for name in ("SYNC_PAGE_SIZE", "SYNC_MAX_RETRIES", "SYNC_CHECK_INTERVAL_SECONDS"):
            monkeypatch.delenv(f"SKILLSYNC_{name}", raising=False)
        cfg = Config()
        assert cfg.sync_page_size == 100
        assert cfg.sync_max_retries == 2
        assert cfg.sync_check_interval_seconds == 60.0
        assert cfg.sync_on_start is True

    def test_index_defaults(self, monkeypatch):
        """HNSW tuning defaults."""
        monkeypatch.delenv("SKILLSYNC_USE_HNSW", raising=False)
        cfg = Config()
        assert cfg.use_hnsw is True
        assert cfg.embedding_dimensions == DEFAULT_DIMENSIONS
        assert (cfg.hnsw_m, cfg.hnsw_ef_construction, cfg.hnsw_ef_search) == (16, 200, 100)
        assert cfg.hnsw_max_elements == 100_000

    def test_embedding_provider_default(self, monkeypatch):
        """SKILLSYNC_EMBEDDING_PROVIDER defaults to 'none'."""
        monkeypatch.delenv("SKILLSYNC_EMBEDDING_PROVIDER", raising=False)
        assert Config().embedding_provider == "none"


class TestConfigEnvironment:
    """Config environment variable loading tests."""

    def test_db_path_from_env(self, monkeypatch, tmp_path):
        """SKILLSYNC_DB_PATH loaded from environment."""
        monkeypatch.setenv("SKILLSYNC_DB_PATH", str(tmp_path / "custom.db"))
        assert Config().db_path == (tmp_path / "custom.db").resolve()

    def test_path_expands_tilde(self, monkeypatch):
        """Paths with ~ are expanded."""
        monkeypatch.setenv("SKILLSYNC_DB_PATH", "~/skills.db")
        cfg = Config()
        assert "~" not in str(cfg.db_path)
        assert cfg.db_path == (Path.home() / "skills.db").resolve()

    def test_registry_url_trailing_slash_stripped(self, monkeypatch):
        """Base URL is normalized."""
        monkeypatch.setenv("SKILLSYNC_REGISTRY_URL", "https://registry.example.com/v1/")
        assert Config().registry_url == "https://registry.example.com/v1"

    def test_booleans_from_env(self, monkeypatch):
        """Boolean flags parse from strings."""
        monkeypatch.setenv("SKILLSYNC_USE_HNSW", "false")
        monkeypatch.setenv("SKILLSYNC_REGISTRY_OFFLINE", "1")
        cfg = Config()
        assert cfg.use_hnsw is False
        assert cfg.registry_offline is True

    def test_page_size_bounds(self, monkeypatch):
        """Page size outside 1..1000 is rejected."""
        monkeypatch.setenv("SKILLSYNC_SYNC_PAGE_SIZE", "0")
        with pytest.raises(ValueError):
            Config()


class TestProviderKeys:
    """Provider selection fails fast without credentials."""

    def test_openai_requires_key(self, monkeypatch):
        """provider=openai without key should fail fast."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            Config(embedding_provider="openai")

    def test_gemini_requires_key(self, monkeypatch):
        """provider=gemini without key should fail fast."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError):
            Config(embedding_provider="gemini")

    def test_google_key_alias_accepted(self, monkeypatch):
        """GOOGLE_API_KEY satisfies the gemini provider."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        cfg = Config(embedding_provider="gemini")
        assert cfg.gemini_api_key == "g-key"


class TestConfigImmutability:
    """Config is frozen; overrides return a copy."""

    def test_frozen(self):
        cfg = Config()
        with pytest.raises(ValueError):
            cfg.sync_page_size = 5

    def test_with_overrides(self, tmp_path):
        cfg = Config(db_path=tmp_path / "a.db")
        updated = cfg.with_overrides(sync_page_size=10)
        assert updated.sync_page_size == 10
        assert cfg.sync_page_size == 100
        assert updated.db_path == cfg.db_path
