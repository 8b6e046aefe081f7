"""
Context Engine - context-window management for long-running LLM chats.

For every inbound query the engine picks the slice of a conversation that
goes to the model: recent messages, relevance-ranked history, segment
summaries and key facts, all inside a hard token budget.

Usage:
    from contextengine import Message, build_context_engine, load_config

    engine = await build_context_engine(load_config())
    await engine.add_message("chat-1", 1, Message(role="user", content="hi"))
    window = await engine.get_optimized_context("chat-1", "hi")
"""

__version__ = "1.0.0"

from contextengine.core import (
    SystemConfig,
    load_config,
    validate_config,
    Message,
    ContextWindow,
    KeyFact,
    FactType,
)
from contextengine.core.context_engine import (
    ContextEngine,
    ContextTimeoutError,
    build_context_engine,
)
from contextengine.utils import setup_logging, ConfigurationError

__all__ = [
    "__version__",

    # Core
    "SystemConfig",
    "load_config",
    "validate_config",
    "ContextEngine",
    "ContextTimeoutError",
    "build_context_engine",

    # Models
    "Message",
    "ContextWindow",
    "KeyFact",
    "FactType",

    # Utilities
    "setup_logging",
    "ConfigurationError",
]


def get_version() -> str:
    """Get the current version of the context engine."""
    return __version__
