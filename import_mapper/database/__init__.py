"""Learning cache storage."""

from import_mapper.database.base import (
    CacheEntry,
    CacheEvent,
    CacheEventKind,
    CacheSnapshot,
    LearningCache,
    age_decay,
)
from import_mapper.database.learning_cache import SqlLearningCache
from import_mapper.database.memory_cache import InMemoryLearningCache
from import_mapper.database.schema import get_session_factory, init_database

__all__ = [
    "CacheEntry",
    "CacheEvent",
    "CacheEventKind",
    "CacheSnapshot",
    "LearningCache",
    "age_decay",
    "SqlLearningCache",
    "InMemoryLearningCache",
    "get_session_factory",
    "init_database",
]
