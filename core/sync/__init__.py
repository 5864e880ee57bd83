"""
Real-time Document Store to Search Index Synchronization.

Key Components:
- ChangeEvent: Parsed change stream notifications
- Projector: Upserts and deletes of single Indexed Documents
- ChangeStreamConsumer: Live tailing with reconnect and resume
- ResumeTokenStore: In-memory or file-backed Resume Position
- RetryPolicy / DeadLetterLog: Projection retries and failure record
- SyncService: Startup checks, backfill, and consumer lifecycle
"""

from .events import ChangeEvent, OperationType
from .projector import Projector
from .consumer import ChangeStreamConsumer, ConsumerState, ConsumerMetrics
from .resume import (
    ResumeTokenStore, InMemoryResumeTokenStore, FileResumeTokenStore, create_resume_store
)
from .retry import RetryPolicy, DeadLetterLog, DeadLetter
from .engine import SyncService

__all__ = [
    "ChangeEvent",
    "OperationType",
    "Projector",
    "ChangeStreamConsumer",
    "ConsumerState",
    "ConsumerMetrics",
    "ResumeTokenStore",
    "InMemoryResumeTokenStore",
    "FileResumeTokenStore",
    "create_resume_store",
    "RetryPolicy",
    "DeadLetterLog",
    "DeadLetter",
    "SyncService",
]
