"""Configuration models and loading."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from pathlib import Path
import logging
import yaml
import os
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class VectorProvider(str, Enum):
    MEMORY = "memory"        # deterministic hash embeddings, in-process
    EMBEDDED = "embedded"    # chromadb PersistentClient
    REMOTE = "remote"        # chromadb HttpClient


class CacheBackend(str, Enum):
    NONE = "none"
    DATABASE = "database"
    REDIS = "redis"


@dataclass
class EngineConfig:
    """Context assembly configuration."""
    max_recent_messages: int = 10
    max_context_tokens: int = 8000
    summarization_threshold: int = 20
    importance_threshold: float = 0.3
    vector_search_limit: int = 5
    cache_expiration_minutes: int = 30
    use_relevance_selector: bool = True
    request_timeout_seconds: Optional[float] = None


@dataclass
class RelevanceConfig:
    """Weights and thresholds for the relevance selector."""
    evidence_weights: Dict[str, float] = field(default_factory=lambda: {
        "semantic": 0.3,
        "temporal": 0.15,
        "entity": 0.2,
        "topic": 0.15,
        "interaction": 0.1,
        "continuity": 0.1,
    })
    prior_weights: Dict[str, float] = field(default_factory=lambda: {
        "base_importance": 0.3,
        "message_type": 0.2,
        "length": 0.15,
        "position": 0.15,
        "user_marked": 0.2,
    })
    prior_weight: float = 0.3
    half_life_hours: float = 24.0
    min_temporal_relevance: float = 0.1
    min_similarity: float = 0.3
    min_relevance: float = 0.3
    max_history_size: int = 50
    top_k: int = 5
    fact_promotion_threshold: float = 0.7


@dataclass
class CacheConfig:
    """Multi-tier cache configuration."""
    max_size: int = 1000
    cleanup_interval_seconds: int = 300
    slow_tier: CacheBackend = CacheBackend.DATABASE
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "ctxcache:"


@dataclass
class VectorStoreConfig:
    """Vector store configuration."""
    provider: VectorProvider = VectorProvider.EMBEDDED
    persist_directory: str = "data/vector_db"
    host: str = "localhost"
    port: int = 8000
    api_key: Optional[str] = None
    collection_name: str = "context_engine"
    embedding_model: str = "all-MiniLM-L6-v2"
    dimension: int = 384
    search_cache_ttl_minutes: int = 15
    search_cache_size: int = 500


@dataclass
class DatabaseConfig:
    url: str = "sqlite+aiosqlite:///data/context_engine.db"
    echo: bool = False


@dataclass
class AnalyticsConfig:
    enabled: bool = True
    retention_days: int = 30


@dataclass
class SystemConfig:
    """Main system configuration."""
    debug_mode: bool = False
    log_level: str = "INFO"

    engine: EngineConfig = field(default_factory=EngineConfig)
    relevance: RelevanceConfig = field(default_factory=RelevanceConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _apply_section(section: Any, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if not hasattr(section, key):
            logger.warning(f"Ignoring unknown config key: {type(section).__name__}.{key}")
            continue
        current = getattr(section, key)
        if isinstance(current, Enum):
            value = type(current)(value)
        elif isinstance(current, dict) and isinstance(value, dict):
            value = {**current, **value}
        setattr(section, key, value)


def load_config(config_path: str = "config/context_engine.yaml") -> SystemConfig:
    """Load configuration from environment and files."""
    load_dotenv()

    config = SystemConfig()

    # YAML first so the environment can override it
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        for section_name, values in data.items():
            if isinstance(values, dict) and hasattr(config, section_name):
                _apply_section(getattr(config, section_name), values)
            elif hasattr(config, section_name):
                setattr(config, section_name, values)

    config.debug_mode = _env_bool("DEBUG_MODE", config.debug_mode)
    config.log_level = os.getenv("LOG_LEVEL", config.log_level)

    # Engine config
    engine = config.engine
    engine.max_recent_messages = int(
        os.getenv("CONTEXT_MAX_RECENT_MESSAGES", str(engine.max_recent_messages))
    )
    engine.max_context_tokens = int(
        os.getenv("CONTEXT_MAX_TOKENS", str(engine.max_context_tokens))
    )
    engine.summarization_threshold = int(
        os.getenv("CONTEXT_SUMMARIZATION_THRESHOLD", str(engine.summarization_threshold))
    )
    engine.importance_threshold = float(
        os.getenv("CONTEXT_IMPORTANCE_THRESHOLD", str(engine.importance_threshold))
    )
    engine.vector_search_limit = int(
        os.getenv("CONTEXT_VECTOR_SEARCH_LIMIT", str(engine.vector_search_limit))
    )
    engine.cache_expiration_minutes = int(
        os.getenv("CONTEXT_CACHE_EXPIRATION", str(engine.cache_expiration_minutes))
    )
    engine.use_relevance_selector = _env_bool(
        "CONTEXT_USE_RELEVANCE_SELECTOR", engine.use_relevance_selector
    )

    # Vector store config
    vector = config.vector_store
    vector.provider = VectorProvider(os.getenv("VECTOR_STORE_PROVIDER", vector.provider.value))
    vector.host = os.getenv("VECTOR_STORE_HOST", vector.host)
    vector.port = int(os.getenv("VECTOR_STORE_PORT", str(vector.port)))
    vector.api_key = os.getenv("VECTOR_STORE_API_KEY", vector.api_key)
    vector.collection_name = os.getenv("VECTOR_STORE_COLLECTION", vector.collection_name)
    vector.embedding_model = os.getenv("EMBEDDING_MODEL", vector.embedding_model)

    # Cache config
    cache = config.cache
    cache.max_size = int(os.getenv("MEMORY_CACHE_MAX_SIZE", str(cache.max_size)))
    cache.slow_tier = CacheBackend(os.getenv("CACHE_SLOW_TIER", cache.slow_tier.value))
    cache.redis_url = os.getenv("REDIS_URL", cache.redis_url)

    config.database.url = os.getenv("CONTEXT_DATABASE_URL", config.database.url)

    config.analytics.enabled = _env_bool("CONTEXT_ANALYTICS_ENABLED", config.analytics.enabled)
    config.analytics.retention_days = int(
        os.getenv("CONTEXT_ANALYTICS_RETENTION_DAYS", str(config.analytics.retention_days))
    )

    return config


def validate_config(config: SystemConfig) -> List[str]:
    """Validate configuration and return errors."""
    errors = []
    engine = config.engine

    if engine.max_recent_messages < 1:
        errors.append("max_recent_messages must be at least 1")

    if engine.max_context_tokens < 1:
        errors.append("max_context_tokens must be at least 1")

    if engine.summarization_threshold < 1:
        errors.append("summarization_threshold must be at least 1")

    if not 0 <= engine.importance_threshold <= 1:
        errors.append("importance_threshold must be between 0 and 1")

    if engine.vector_search_limit < 0:
        errors.append("vector_search_limit must not be negative")

    if engine.cache_expiration_minutes <= 0:
        errors.append("cache_expiration_minutes must be positive")

    if engine.request_timeout_seconds is not None and engine.request_timeout_seconds <= 0:
        errors.append("request_timeout_seconds must be positive when set")

    # Relevance validation
    relevance = config.relevance
    for name in ("min_similarity", "min_relevance", "prior_weight", "fact_promotion_threshold"):
        value = getattr(relevance, name)
        if not 0 <= value <= 1:
            errors.append(f"relevance.{name} must be between 0 and 1")

    for group in ("evidence_weights", "prior_weights"):
        weights = getattr(relevance, group)
        if any(w < 0 for w in weights.values()):
            errors.append(f"relevance.{group} must not contain negative weights")
        if sum(weights.values()) <= 0:
            errors.append(f"relevance.{group} must sum to a positive value")

    if relevance.half_life_hours <= 0:
        errors.append("relevance.half_life_hours must be positive")

    if relevance.top_k < 1 or relevance.max_history_size < 1:
        errors.append("relevance.top_k and relevance.max_history_size must be at least 1")

    # Cache validation
    if config.cache.max_size < 1:
        errors.append("cache.max_size must be at least 1")

    if config.cache.cleanup_interval_seconds <= 0:
        errors.append("cache.cleanup_interval_seconds must be positive")

    # Vector store validation
    if config.vector_store.dimension < 1:
        errors.append("vector_store.dimension must be at least 1")

    if config.analytics.retention_days < 1:
        errors.append("analytics.retention_days must be at least 1")

    return errors
