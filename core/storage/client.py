"""
OpenSearch client for subscriber-sync.

Provides index management, single-document writes, and bulk writes with
per-call timeouts and per-item error reporting.
"""

import asyncio
import logging
import time
from typing import List, Dict, Any, Optional, Tuple

from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException, RequestError

from .schemas import IndexConfig
from ..models.storage import StorageResult

logger = logging.getLogger(__name__)


class SearchIndexClient:
    """
    OpenSearch client for the subscriber index.

    TLS and basic auth are driven by configuration so plain and secured
    clusters share one code path.

    Features:
    - Index existence checks and creation from an IndexConfig
    - Overwrite-by-id writes and idempotent deletes
    - Bulk writes with per-item failure details
    - Bounded timeout on every call
    """

    def __init__(
        self,
        url: str = "http://localhost:9200",
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_certs: bool = True,
        timeout: float = 30.0
    ):
        """
        Initialize OpenSearch client.

        Args:
            url: OpenSearch endpoint URL; https enables TLS
            username: Optional basic-auth user
            password: Optional basic-auth password
            verify_certs: Whether to verify TLS certificates
            timeout: Per-request timeout in seconds
        """
        self.url = url.rstrip('/')
        self.username = username
        self.password = password
        self.verify_certs = verify_certs
        self.timeout = timeout

        self._client: Optional[OpenSearch] = None
        self._connection_lock = asyncio.Lock()
        self._connected = False

        # Performance tracking
        self._total_requests = 0
        self._failed_requests = 0

        logger.info(f"Initialized SearchIndexClient: {self.url}")

    @property
    def use_ssl(self) -> bool:
        return self.url.startswith('https://')

    @property
    def http_auth(self) -> Optional[Tuple[str, str]]:
        if self.username and self.password:
            return (self.username, self.password)
        return None

    @property
    def client(self) -> OpenSearch:
        """Get OpenSearch client instance"""
        if self._client is None:
            self._client = OpenSearch(
                hosts=[self.url],
                http_auth=self.http_auth,
                use_ssl=self.use_ssl,
                verify_certs=self.verify_certs,
                ssl_show_warn=self.verify_certs,
                connection_class=RequestsHttpConnection,
                timeout=self.timeout
            )
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """
        Establish connection to OpenSearch.

        Returns:
            True if connection successful, False otherwise
        """
        async with self._connection_lock:
            if self._connected:
                return True

            try:
                start_time = time.time()
                info = await asyncio.to_thread(self.client.info, request_timeout=self.timeout)
                elapsed = time.time() - start_time

                version = info.get('version', {}).get('number', 'unknown')
                self._connected = True
                logger.info(f"Connected to OpenSearch {version} in {elapsed:.3f}s")
                return True

            except Exception as e:
                logger.error(f"Failed to connect to OpenSearch at {self.url}: {e}")
                self._connected = False
                return False

    async def disconnect(self) -> None:
        """Disconnect from OpenSearch"""
        async with self._connection_lock:
            if self._client is not None:
                try:
                    await asyncio.to_thread(self._client.close)
                except Exception as e:
                    logger.debug(f"Error closing OpenSearch client: {e}")
                self._client = None

            self._connected = False
            logger.info("Disconnected from OpenSearch")

    async def health_check(self) -> Dict[str, Any]:
        """
        Check OpenSearch cluster health.

        Returns:
            Health status information
        """
        try:
            start_time = time.time()
            health = await asyncio.to_thread(
                self.client.cluster.health, request_timeout=self.timeout
            )
            elapsed = time.time() - start_time

            return {
                "status": "healthy" if health.get('status') in ('green', 'yellow') else "degraded",
                "cluster_status": health.get('status'),
                "response_time_ms": elapsed * 1000,
                "connected": self._connected,
                "url": self.url
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "connected": False,
                "url": self.url
            }

    async def index_exists(self, index_name: str) -> StorageResult:
        """Check whether an index exists; ``details['exists']`` holds the answer"""
        start_time = time.time()
        try:
            exists = await asyncio.to_thread(
                self.client.indices.exists, index=index_name, request_timeout=self.timeout
            )
            processing_time = (time.time() - start_time) * 1000
            return StorageResult.successful_write(
                'index_exists', index_name, 0, processing_time,
                details={'exists': bool(exists)}
            )
        except Exception as e:
            return self._failure('index_exists', index_name, e, start_time)

    async def create_index(self, config: IndexConfig) -> StorageResult:
        """
        Create index with settings and mappings.

        An index that already exists is reported as success with
        ``affected_count == 0``.
        """
        start_time = time.time()
        try:
            await asyncio.to_thread(
                self.client.indices.create,
                index=config.name,
                body=config.to_opensearch_body(),
                request_timeout=self.timeout
            )
            processing_time = (time.time() - start_time) * 1000
            logger.info(f"Created index '{config.name}' in {processing_time:.2f}ms")
            return StorageResult.successful_write('create_index', config.name, 1, processing_time)

        except RequestError as e:
            if e.error == 'resource_already_exists_exception':
                processing_time = (time.time() - start_time) * 1000
                return StorageResult.successful_write(
                    'create_index', config.name, 0, processing_time, total_count=1
                )
            return self._failure('create_index', config.name, e, start_time)
        except Exception as e:
            return self._failure('create_index', config.name, e, start_time)

    async def index_document(
        self,
        index_name: str,
        document_id: str,
        body: Dict[str, Any]
    ) -> StorageResult:
        """
        Write a document by id, fully replacing any previous version.

        Args:
            index_name: Target index
            document_id: Document id
            body: Document body

        Returns:
            Storage operation result
        """
        start_time = time.time()
        self._total_requests += 1
        try:
            response = await asyncio.to_thread(
                self.client.index,
                index=index_name,
                id=document_id,
                body=body,
                request_timeout=self.timeout
            )
            processing_time = (time.time() - start_time) * 1000
            logger.debug(f"Indexed {document_id} ({response.get('result')}) in {processing_time:.2f}ms")
            return StorageResult.successful_write(
                'index', index_name, 1, processing_time,
                details={'id': document_id, 'result': response.get('result')}
            )
        except Exception as e:
            self._failed_requests += 1
            return self._failure('index', index_name, e, start_time, total_count=1,
                                 error_details={'id': document_id})

    async def delete_document(self, index_name: str, document_id: str) -> StorageResult:
        """
        Delete a document by id.

        A missing document is a successful delete with ``affected_count == 0``.
        """
        start_time = time.time()
        self._total_requests += 1
        try:
            await asyncio.to_thread(
                self.client.delete,
                index=index_name,
                id=document_id,
                request_timeout=self.timeout
            )
            processing_time = (time.time() - start_time) * 1000
            return StorageResult.successful_delete(index_name, 1, processing_time)
        except NotFoundError:
            processing_time = (time.time() - start_time) * 1000
            logger.debug(f"Delete of {document_id}: not present in '{index_name}'")
            return StorageResult.successful_delete(index_name, 0, processing_time)
        except Exception as e:
            self._failed_requests += 1
            return self._failure('delete', index_name, e, start_time, total_count=1,
                                 error_details={'id': document_id})

    async def get_document(self, index_name: str, document_id: str) -> StorageResult:
        """
        Fetch a document by id.

        ``details['found']`` tells whether it exists and ``details['source']``
        holds its body.
        """
        start_time = time.time()
        try:
            response = await asyncio.to_thread(
                self.client.get,
                index=index_name,
                id=document_id,
                request_timeout=self.timeout
            )
            processing_time = (time.time() - start_time) * 1000
            return StorageResult.successful_write(
                'get', index_name, 1, processing_time,
                details={'found': True, 'source': response.get('_source', {})}
            )
        except NotFoundError:
            processing_time = (time.time() - start_time) * 1000
            return StorageResult.successful_write(
                'get', index_name, 0, processing_time, total_count=1,
                details={'found': False, 'source': None}
            )
        except Exception as e:
            return self._failure('get', index_name, e, start_time)

    async def bulk_index(
        self,
        index_name: str,
        documents: List[Tuple[str, Dict[str, Any]]]
    ) -> StorageResult:
        """
        Index a batch of documents in one bulk request.

        Args:
            index_name: Target index
            documents: (document id, body) pairs

        Returns:
            Storage operation result; ``affected_count`` counts items the
            index accepted, ``details['failed_ids']`` lists the rest
        """
        start_time = time.time()
        total = len(documents)

        if not documents:
            return StorageResult.successful_write('bulk_index', index_name, 0, 0)

        actions: List[Dict[str, Any]] = []
        for document_id, body in documents:
            actions.append({'index': {'_index': index_name, '_id': document_id}})
            actions.append(body)

        self._total_requests += 1
        try:
            response = await asyncio.to_thread(
                self.client.bulk,
                body=actions,
                request_timeout=self.timeout
            )
        except Exception as e:
            self._failed_requests += 1
            return self._failure('bulk_index', index_name, e, start_time, total_count=total)

        failed_ids: List[str] = []
        item_errors: Dict[str, Any] = {}
        for item in response.get('items', []):
            result = item.get('index', {})
            if result.get('error') or result.get('status', 200) >= 300:
                item_id = str(result.get('_id'))
                failed_ids.append(item_id)
                item_errors[item_id] = result.get('error')

        succeeded = total - len(failed_ids)
        processing_time = (time.time() - start_time) * 1000

        logger.debug(
            f"Bulk indexed {succeeded}/{total} documents "
            f"to {index_name} in {processing_time:.2f}ms"
        )

        result = StorageResult.successful_write(
            'bulk_index', index_name, succeeded, processing_time,
            total_count=total,
            details={'failed_ids': failed_ids, 'item_errors': item_errors}
        )
        if failed_ids:
            result.warnings.append(f"{len(failed_ids)} of {total} bulk items failed")
        return result

    async def count(self, index_name: str) -> StorageResult:
        """Count documents in an index; the count is ``affected_count``"""
        start_time = time.time()
        try:
            response = await asyncio.to_thread(
                self.client.count, index=index_name, request_timeout=self.timeout
            )
            processing_time = (time.time() - start_time) * 1000
            return StorageResult.successful_write(
                'count', index_name, int(response.get('count', 0)), processing_time
            )
        except Exception as e:
            return self._failure('count', index_name, e, start_time)

    def _failure(
        self,
        operation: str,
        index_name: str,
        error: Exception,
        start_time: float,
        total_count: int = 0,
        error_details: Optional[Dict[str, Any]] = None
    ) -> StorageResult:
        processing_time = (time.time() - start_time) * 1000
        error_msg = f"{operation} on {index_name} failed: {error}"
        if isinstance(error, OpenSearchException):
            logger.error(error_msg)
        else:
            logger.error(f"{error_msg} ({type(error).__name__})")
        return StorageResult.failed_operation(
            operation, index_name, error_msg, processing_time,
            error_details=error_details, total_count=total_count
        )

    def get_performance_stats(self) -> Dict[str, Any]:
        """Request counters"""
        return {
            "total_requests": self._total_requests,
            "failed_requests": self._failed_requests,
            "error_rate": self._failed_requests / max(self._total_requests, 1),
            "connected": self._connected
        }
