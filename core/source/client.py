"""
Document Store client for subscriber-sync.

Wraps a pymongo MongoClient: connection checks, change stream cursors,
point lookups, and batched full-collection scans for the backfill.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional

from pymongo import ASCENDING, MongoClient
from pymongo.errors import OperationFailure, PyMongoError

from ..errors import DocumentStoreError, ResumeTokenExpiredError

logger = logging.getLogger(__name__)


# Change stream operation types delivered to the consumer
WATCHED_OPERATIONS = ['insert', 'update', 'replace', 'delete', 'invalidate']

# ChangeStreamHistoryLost, ChangeStreamFatalError
RESUME_FAILURE_CODES = {280, 286}


def _is_resume_failure(error: OperationFailure) -> bool:
    if error.code in RESUME_FAILURE_CODES:
        return True
    message = str(error).lower()
    return 'resume point may no longer be in the oplog' in message or 'resume token' in message


class ChangeStreamCursor:
    """
    Async facade over a pymongo ChangeStream.

    ``next_change`` blocks for at most ``max_await_time_ms`` and returns
    None when nothing arrived, so the caller can check for shutdown
    between polls.
    """

    def __init__(self, stream: Any):
        self._stream = stream
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def resume_token(self) -> Optional[Dict[str, Any]]:
        """Post-batch resume token of the underlying stream"""
        return self._stream.resume_token

    async def next_change(self) -> Optional[Dict[str, Any]]:
        """
        Get the next raw change document.

        Raises:
            DocumentStoreError: if the stream is closed or fails
            ResumeTokenExpiredError: if the server can no longer resume
        """
        if self._closed:
            raise DocumentStoreError("Change stream is closed")

        try:
            return await asyncio.to_thread(self._stream.try_next)
        except OperationFailure as e:
            if _is_resume_failure(e):
                raise ResumeTokenExpiredError(f"Change stream cannot resume: {e}") from e
            raise DocumentStoreError(f"Change stream failed: {e}") from e
        except PyMongoError as e:
            raise DocumentStoreError(f"Change stream failed: {e}") from e

    async def close(self) -> None:
        """Close the stream; safe to call more than once"""
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.to_thread(self._stream.close)
        except PyMongoError as e:
            logger.debug(f"Error closing change stream: {e}")


class DocumentStoreClient:
    """
    MongoDB client for the subscriber collection.

    Features:
    - Replica-set verification at connect time
    - Change streams with updateLookup and resume support
    - Point lookups by id
    - Stable ``_id``-ordered batch iteration for backfill
    """

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017/sdrms?replicaSet=sdrms-rs",
        database: Optional[str] = None,
        collection: str = "subscribers",
        server_selection_timeout_ms: int = 10000,
        max_await_time_ms: int = 1000
    ):
        """
        Initialize Document Store client.

        Args:
            uri: MongoDB connection string
            database: Database name (defaults to the one in the URI)
            collection: Subscriber collection name
            server_selection_timeout_ms: Fail-fast timeout for unreachable deployments
            max_await_time_ms: Maximum wait of a single change stream poll
        """
        self.uri = uri
        self.database_name = database
        self.collection_name = collection
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.max_await_time_ms = max_await_time_ms

        self._client: Optional[MongoClient] = None
        self._connection_lock = asyncio.Lock()
        self._connected = False

    @property
    def client(self) -> MongoClient:
        """Get MongoClient instance"""
        if self._client is None:
            self._client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms
            )
        return self._client

    @property
    def collection(self):
        if self.database_name:
            database = self.client[self.database_name]
        else:
            database = self.client.get_default_database()
        return database[self.collection_name]

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Verify the deployment is reachable and supports change streams.

        Raises:
            DocumentStoreError: if unreachable or not a replica set
        """
        async with self._connection_lock:
            if self._connected:
                return

            start_time = time.time()
            try:
                await asyncio.to_thread(self.client.admin.command, 'ping')
                hello = await asyncio.to_thread(self.client.admin.command, 'hello')
            except PyMongoError as e:
                raise DocumentStoreError(f"Cannot reach Document Store: {e}") from e

            if not hello.get('setName') and hello.get('msg') != 'isdbgrid':
                raise DocumentStoreError(
                    "Document Store is not a replica set; change streams are unavailable"
                )

            try:
                # Touch the collection handle so a missing default database fails here
                self.collection
            except PyMongoError as e:
                raise DocumentStoreError(f"Invalid Document Store database: {e}") from e

            self._connected = True
            elapsed = time.time() - start_time
            logger.info(
                f"Connected to Document Store ({hello.get('setName', 'mongos')}) "
                f"in {elapsed:.3f}s, collection '{self.collection_name}'"
            )

    async def disconnect(self) -> None:
        """Close the underlying MongoClient"""
        async with self._connection_lock:
            if self._client is not None:
                await asyncio.to_thread(self._client.close)
                self._client = None
            self._connected = False
            logger.info("Disconnected from Document Store")

    async def open_change_stream(
        self,
        resume_after: Optional[Dict[str, Any]] = None
    ) -> ChangeStreamCursor:
        """
        Open a change stream over the subscriber collection.

        Args:
            resume_after: Resume token to continue from, or None for the current tail

        Raises:
            ResumeTokenExpiredError: if the resume token is no longer valid
            DocumentStoreError: on any other failure
        """
        pipeline = [{'$match': {'operationType': {'$in': WATCHED_OPERATIONS}}}]
        options: Dict[str, Any] = {
            'full_document': 'updateLookup',
            'max_await_time_ms': self.max_await_time_ms
        }
        if resume_after is not None:
            options['resume_after'] = resume_after

        try:
            stream = await asyncio.to_thread(self.collection.watch, pipeline, **options)
        except OperationFailure as e:
            if resume_after is not None and _is_resume_failure(e):
                raise ResumeTokenExpiredError(f"Resume token rejected: {e}") from e
            raise DocumentStoreError(f"Failed to open change stream: {e}") from e
        except PyMongoError as e:
            raise DocumentStoreError(f"Failed to open change stream: {e}") from e

        logger.info(
            f"Opened change stream on '{self.collection_name}' "
            f"({'resuming' if resume_after is not None else 'from current tail'})"
        )
        return ChangeStreamCursor(stream)

    async def find_by_id(self, document_key: Any) -> Optional[Dict[str, Any]]:
        """
        Point lookup by ``_id``.

        Returns:
            Raw document, or None if it no longer exists
        """
        try:
            return await asyncio.to_thread(self.collection.find_one, {'_id': document_key})
        except PyMongoError as e:
            raise DocumentStoreError(f"Lookup of {document_key} failed: {e}") from e

    async def count_documents(self) -> int:
        try:
            return await asyncio.to_thread(self.collection.count_documents, {})
        except PyMongoError as e:
            raise DocumentStoreError(f"Count failed: {e}") from e

    async def iter_batches(self, batch_size: int = 100) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Iterate the whole collection in ``_id`` order.

        Args:
            batch_size: Maximum documents per yielded batch

        Yields:
            Lists of raw documents, each at most ``batch_size`` long
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")

        cursor = self.collection.find({}).sort('_id', ASCENDING).batch_size(batch_size)
        try:
            while True:
                batch = await asyncio.to_thread(self._read_batch, cursor, batch_size)
                if not batch:
                    break
                yield batch
                if len(batch) < batch_size:
                    break
        except PyMongoError as e:
            raise DocumentStoreError(f"Collection scan failed: {e}") from e
        finally:
            await asyncio.to_thread(cursor.close)

    @staticmethod
    def _read_batch(cursor: Any, batch_size: int) -> List[Dict[str, Any]]:
        batch = []
        for document in cursor:
            batch.append(document)
            if len(batch) >= batch_size:
                break
        return batch

    async def health_check(self) -> Dict[str, Any]:
        """Check Document Store health"""
        try:
            start_time = time.time()
            await asyncio.to_thread(self.client.admin.command, 'ping')
            elapsed = time.time() - start_time
            return {
                "status": "healthy",
                "response_time_ms": elapsed * 1000,
                "connected": self._connected,
                "collection": self.collection_name
            }
        except PyMongoError as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "connected": False,
                "collection": self.collection_name
            }
