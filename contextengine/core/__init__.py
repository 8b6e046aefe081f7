"""Core components: configuration, shared data models and the engine.

Usage:
    from contextengine.core import SystemConfig, load_config
    from contextengine.core.context_engine import build_context_engine

    engine = await build_context_engine(load_config())
    window = await engine.get_optimized_context("chat-1", "what did we decide?")
"""

from contextengine.core.config import (
    SystemConfig,
    EngineConfig,
    RelevanceConfig,
    CacheConfig,
    CacheBackend,
    VectorStoreConfig,
    VectorProvider,
    DatabaseConfig,
    AnalyticsConfig,
    load_config,
    validate_config,
)
from contextengine.core.interfaces import (
    Message,
    Conversation,
    MessageMetadata,
    ConversationSegment,
    KeyFact,
    FactType,
    SegmentTier,
    VectorKind,
    VectorSearchResult,
    ContextWindow,
    CachedPayload,
    ICacheTier,
    IEmbedder,
    IVectorStore,
)

__all__ = [
    # Configuration
    "SystemConfig",
    "EngineConfig",
    "RelevanceConfig",
    "CacheConfig",
    "CacheBackend",
    "VectorStoreConfig",
    "VectorProvider",
    "DatabaseConfig",
    "AnalyticsConfig",
    "load_config",
    "validate_config",

    # Interfaces & Models
    "Message",
    "Conversation",
    "MessageMetadata",
    "ConversationSegment",
    "KeyFact",
    "FactType",
    "SegmentTier",
    "VectorKind",
    "VectorSearchResult",
    "ContextWindow",
    "CachedPayload",
    "ICacheTier",
    "IEmbedder",
    "IVectorStore",
]


def create_default_config() -> SystemConfig:
    """Create a default system configuration."""
    return SystemConfig()
