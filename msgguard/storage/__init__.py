"""Async SQLite persistence shared by all stores."""

from msgguard.storage.connection import ConnectionManager
from msgguard.storage.schema import SchemaManager

__all__ = ["ConnectionManager", "SchemaManager"]
