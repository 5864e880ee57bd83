"""
Storage package for subscriber-sync.

Provides OpenSearch integration, index schema management, and backfill.
"""

from .client import SearchIndexClient
from .schemas import IndexSchemaManager, IndexSchema, IndexConfig, FieldMapping
from .indexing import BackfillSynchronizer, BackfillProgress, BackfillResult

__all__ = [
    "SearchIndexClient",
    "IndexSchemaManager",
    "IndexSchema",
    "IndexConfig",
    "FieldMapping",
    "BackfillSynchronizer",
    "BackfillProgress",
    "BackfillResult"
]
