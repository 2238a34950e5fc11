"""Key-value persistence for settings, models and conversations.

Responsibilities:
    - KeyValueStore interface with get/set/delete/subscribe
    - In-memory and SQLite-backed implementations
    - ConversationRepository: typed access on top of the raw store
"""

from docchat.store.kv import InMemoryStore, KeyValueStore, SqliteStore
from docchat.store.repository import ConversationRepository

__all__ = ["ConversationRepository", "InMemoryStore", "KeyValueStore", "SqliteStore"]
