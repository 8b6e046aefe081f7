"""Unit tests for configuration loading and validation."""

import pytest

from contextengine.core.config import (
    CacheBackend,
    SystemConfig,
    VectorProvider,
    load_config,
    validate_config,
)
from contextengine.utils.validation import ConfigurationError, ValidationError


class TestLoadConfig:
    """Test config sources."""

    def test_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "missing.yaml"))

        assert config.engine.max_recent_messages == 10
        assert config.engine.summarization_threshold == 20
        assert config.engine.cache_expiration_minutes == 30
        assert config.relevance.top_k == 5
        assert config.cache.max_size == 1000
        assert validate_config(config) == []

    def test_yaml_then_env(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "engine:\n"
            "  max_recent_messages: 4\n"
            "  max_context_tokens: 2000\n"
            "relevance:\n"
            "  evidence_weights:\n"
            "    semantic: 0.5\n"
            "vector_store:\n"
            "  provider: memory\n"
            "cache:\n"
            "  slow_tier: none\n"
        )
        monkeypatch.setenv("CONTEXT_MAX_TOKENS", "3000")

        config = load_config(str(path))

        assert config.engine.max_recent_messages == 4
        assert config.engine.max_context_tokens == 3000
        assert config.relevance.evidence_weights["semantic"] == 0.5
        assert config.relevance.evidence_weights["temporal"] == 0.15
        assert config.vector_store.provider == VectorProvider.MEMORY
        assert config.cache.slow_tier == CacheBackend.NONE

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONTEXT_USE_RELEVANCE_SELECTOR", "false")
        monkeypatch.setenv("CACHE_SLOW_TIER", "redis")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379")
        monkeypatch.setenv("CONTEXT_DATABASE_URL", "sqlite+aiosqlite:///tmp/x.db")

        config = load_config(str(tmp_path / "missing.yaml"))

        assert config.engine.use_relevance_selector is False
        assert config.cache.slow_tier == CacheBackend.REDIS
        assert config.cache.redis_url == "redis://cache:6379"
        assert config.database.url == "sqlite+aiosqlite:///tmp/x.db"


class TestValidateConfig:
    """Test validation rules."""

    def test_reports_every_problem(self):
        config = SystemConfig()
        config.engine.max_recent_messages = 0
        config.engine.importance_threshold = 1.5
        config.engine.cache_expiration_minutes = 0
        config.cache.max_size = 0
        config.relevance.evidence_weights = {"semantic": -1.0}

        errors = validate_config(config)

        assert "max_recent_messages must be at least 1" in errors
        assert "importance_threshold must be between 0 and 1" in errors
        assert "cache_expiration_minutes must be positive" in errors
        assert "cache.max_size must be at least 1" in errors
        assert any("evidence_weights" in e for e in errors)

    def test_configuration_error_is_validation_error(self):
        error = ConfigurationError(["a", "b"])
        assert isinstance(error, ValidationError)
        assert error.errors == ["a", "b"]
        assert "a; b" in str(error)

    async def test_engine_rejects_invalid_config(self, test_config, store):
        from contextengine.cache.memory_cache import MemoryCache
        from contextengine.cache.multi_tier import MultiTierCache
        from contextengine.core.context_engine import ContextEngine

        test_config.engine.max_context_tokens = 0
        with pytest.raises(ConfigurationError):
            ContextEngine(test_config, store, MultiTierCache(MemoryCache()))


class TestSetupLogging:
    """Test logging configuration."""

    def test_console_only(self):
        import logging
        from contextengine.utils.logging_config import setup_logging

        setup_logging(log_level="WARNING", log_dir=None)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("chromadb").level == logging.WARNING
        root.handlers.clear()
        root.setLevel(logging.WARNING)

    def test_rotating_file(self, tmp_path):
        import logging
        from logging.handlers import RotatingFileHandler
        from contextengine.utils.logging_config import setup_logging

        setup_logging(debug_mode=True, log_dir=str(tmp_path), log_file="test.log")

        root = logging.getLogger()
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        assert (tmp_path / "test.log").exists()
        for handler in root.handlers:
            handler.close()
        root.handlers.clear()
