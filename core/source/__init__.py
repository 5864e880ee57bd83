"""
Document Store access for subscriber-sync
"""

from .client import DocumentStoreClient, ChangeStreamCursor

__all__ = [
    "DocumentStoreClient",
    "ChangeStreamCursor",
]
