"""Pytest configuration and fixtures."""

import pytest
from pathlib import Path
import tempfile
import shutil

from contextengine.cache.database_cache import DatabaseCacheTier
from contextengine.cache.memory_cache import MemoryCache
from contextengine.cache.multi_tier import MultiTierCache
from contextengine.core.config import CacheBackend, SystemConfig, VectorProvider
from contextengine.core.context_engine import ContextEngine
from contextengine.core.interfaces import Message
from contextengine.storage.analytics import ContextAnalytics
from contextengine.storage.conversation_store import ConversationStore
from contextengine.storage.database import Database
from contextengine.vector.embeddings import HashEmbedder
from contextengine.vector.in_memory_store import InMemoryVectorStore
from contextengine.vector.manager import VectorStoreManager


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def test_config(temp_data_dir):
    """Create test configuration."""
    config = SystemConfig()
    config.debug_mode = True
    config.log_level = "DEBUG"

    config.database.url = f"sqlite+aiosqlite:///{temp_data_dir / 'context.db'}"
    config.vector_store.provider = VectorProvider.MEMORY
    config.vector_store.dimension = 256
    config.vector_store.persist_directory = str(temp_data_dir / "vector_db")
    config.cache.slow_tier = CacheBackend.DATABASE
    config.cache.max_size = 100

    return config


@pytest.fixture
async def database(test_config):
    """Initialized temporary SQLite database."""
    db = Database(test_config.database.url)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
async def store(database):
    return ConversationStore(database)


@pytest.fixture
async def vectors():
    """In-memory vector store with deterministic hash embeddings."""
    manager = VectorStoreManager(InMemoryVectorStore(HashEmbedder(256)))
    await manager.initialize()
    return manager


@pytest.fixture
async def engine(test_config, database, store, vectors):
    """Fully wired engine over the temporary database."""
    cache = MultiTierCache(MemoryCache(max_size=100), DatabaseCacheTier(database))
    context_engine = ContextEngine(
        test_config,
        store,
        cache,
        vectors=vectors,
        analytics=ContextAnalytics(database),
    )
    await context_engine.initialize()
    yield context_engine
    # The database fixture owns disposal
    await context_engine.wait_for_background()
    await context_engine.cache.close()
    await context_engine.vectors.close()


@pytest.fixture
def sample_messages():
    """Sample messages for testing."""
    return [
        Message(role="user", content="Hello", metadata={}),
        Message(role="assistant", content="Hi there!", metadata={}),
        Message(role="user", content="How are you?", metadata={}),
    ]
