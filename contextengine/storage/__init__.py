"""Durable storage for conversations, segments, facts and analytics."""

from contextengine.storage.analytics import ContextAnalytics
from contextengine.storage.conversation_store import ConversationStore
from contextengine.storage.database import Database, StoreUnavailableError

__all__ = [
    'ContextAnalytics',
    'ConversationStore',
    'Database',
    'StoreUnavailableError',
]
