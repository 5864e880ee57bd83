"""
subscriber-sync core package

Change-data-capture from the subscriber collection into the search index.
"""

__version__ = "1.0.0"

from .models import SourceDocument, IndexedDocument, StorageResult, ServiceConfig
from .errors import SyncError

__all__ = [
    "SourceDocument",
    "IndexedDocument",
    "StorageResult",
    "ServiceConfig",
    "SyncError"
]
