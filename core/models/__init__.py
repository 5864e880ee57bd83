"""
Core data models for subscriber-sync

All Pydantic models for configuration, documents, and storage results.
"""

from .documents import (
    SourceDocument, IndexedDocument, IndexedAddress,
    document_id_to_index_id, normalize_bson_value
)
from .storage import StorageResult
from .config import ServiceConfig, MongoConfig, OpenSearchConfig, SyncConfig, GlobalSettings

__all__ = [
    # Documents
    "SourceDocument",
    "IndexedDocument",
    "IndexedAddress",
    "document_id_to_index_id",
    "normalize_bson_value",

    # Storage
    "StorageResult",

    # Configuration
    "ServiceConfig",
    "MongoConfig",
    "OpenSearchConfig",
    "SyncConfig",
    "GlobalSettings",
]
