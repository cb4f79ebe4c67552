"""
Client state persistence.
Supports an in-memory surface and a Redis surface behind the same interface.
"""

from .key_value import (
    KeyValueStore,
    InMemoryKeyValueStore,
    NamespacedKeyValueStore,
    RedisKeyValueStore,
)
from .progress_store import ProgressStore

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "NamespacedKeyValueStore",
    "RedisKeyValueStore",
    "ProgressStore",
]
