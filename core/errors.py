"""
Exception hierarchy for the synchronization service.

Startup errors are fatal and end the process with a non-zero exit code;
stream and projection errors are recovered from inside the consumer.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync service errors"""
    pass


class StartupError(SyncError):
    """The service cannot start in a consistent state"""
    pass


class DocumentStoreError(SyncError):
    """Document Store unreachable or unsuitable for change streams"""
    pass


class ResumeTokenExpiredError(DocumentStoreError):
    """The stored resume token is no longer in the oplog"""
    pass


class IndexSchemaError(SyncError):
    """The target index could not be created"""
    pass


class ConsumerFatalError(SyncError):
    """The consumer gave up after repeated connection failures"""
    pass


class ProjectionError(SyncError):
    """A single index or delete write failed"""

    def __init__(self, message: str, document_id: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.document_id = document_id
        self.operation = operation
