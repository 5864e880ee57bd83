"""
Subscriber Synchronization Service.

Lifecycle coordinator: verifies both stores, ensures the index, runs the
optional backfill, then drives the change stream consumer until shutdown.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..errors import DocumentStoreError, IndexSchemaError, StartupError
from ..models.config import ServiceConfig
from ..source.client import DocumentStoreClient
from ..storage.client import SearchIndexClient
from ..storage.indexing import BackfillSynchronizer
from ..storage.schemas import IndexSchema, IndexSchemaManager
from .consumer import ChangeStreamConsumer
from .projector import Projector
from .resume import ResumeTokenStore, create_resume_store
from .retry import DeadLetterLog, RetryPolicy

logger = logging.getLogger(__name__)


class SyncService:
    """
    Keeps the Search Index consistent with the Document Store.

    Clients are injected so tests can substitute in-memory doubles; when
    omitted they are built from the configuration.

    Features:
    - Fail-fast startup checks for both stores and the index
    - One-off backfill before live tailing
    - Graceful shutdown that lets an in-flight write finish
    """

    def __init__(
        self,
        config: ServiceConfig,
        store: Optional[DocumentStoreClient] = None,
        index_client: Optional[SearchIndexClient] = None,
        resume_store: Optional[ResumeTokenStore] = None
    ):
        """
        Initialize the service.

        Args:
            config: Complete service configuration
            store: Document Store client (built from config if None)
            index_client: Search Index client (built from config if None)
            resume_store: Resume Position storage (from config if None)
        """
        self.config = config
        self.index_name = config.opensearch.index_name

        self.store = store or DocumentStoreClient(
            uri=config.mongo.uri,
            database=config.mongo.database,
            collection=config.mongo.collection,
            server_selection_timeout_ms=config.mongo.server_selection_timeout_ms,
            max_await_time_ms=config.mongo.max_await_time_ms
        )
        self.index_client = index_client or SearchIndexClient(
            url=config.opensearch.url,
            username=config.opensearch.username,
            password=config.opensearch.password,
            verify_certs=config.opensearch.verify_certs,
            timeout=config.opensearch.timeout
        )
        self.resume_store = resume_store or create_resume_store(config.sync.resume_token_file)

        self.schema_manager = IndexSchemaManager(self.index_client)
        self.dead_letters = DeadLetterLog(config.sync.dead_letter_limit)
        self.retry_policy = RetryPolicy(
            max_attempts=config.sync.projection_retries + 1,
            initial_delay=config.sync.retry_initial_delay,
            max_delay=config.sync.retry_max_delay
        )
        self.projector = Projector(self.index_client, self.index_name, self.retry_policy)
        self.backfill = BackfillSynchronizer(
            self.store, self.index_client, self.index_name, config.sync.batch_size
        )
        self.consumer = ChangeStreamConsumer(
            self.store,
            self.projector,
            resume_store=self.resume_store,
            reconnect_delay=config.sync.reconnect_delay_seconds,
            max_connect_attempts=config.sync.max_connect_attempts,
            dead_letters=self.dead_letters
        )

        self.is_running = False
        self.start_time: Optional[datetime] = None
        self.backfill_count: Optional[int] = None
        self.consumer_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """
        Connect both stores and make sure the index exists.

        Raises:
            StartupError: if any prerequisite fails
        """
        try:
            await self.store.connect()
        except DocumentStoreError as e:
            raise StartupError(f"Document Store unavailable: {e}") from e

        if not await self.index_client.connect():
            raise StartupError(f"Search Index unavailable at {self.config.opensearch.url}")

        index_config = IndexSchema.get_subscriber_index_config(
            self.index_name,
            number_of_shards=self.config.opensearch.number_of_shards,
            number_of_replicas=self.config.opensearch.number_of_replicas
        )
        try:
            await self.schema_manager.ensure_index(self.index_name, index_config)
        except IndexSchemaError as e:
            raise StartupError(str(e)) from e

    async def start(self, run_backfill: Optional[bool] = None) -> None:
        """
        Run startup checks, the optional backfill, and launch the consumer.

        Args:
            run_backfill: Override of ``sync.run_backfill``

        Raises:
            StartupError: if startup prerequisites fail
        """
        if self.is_running:
            logger.warning("Sync service is already running")
            return

        logger.info(
            f"Starting sync service: collection '{self.config.mongo.collection}' "
            f"-> index '{self.index_name}'"
        )
        await self.connect()
        self.start_time = datetime.now()
        self.is_running = True

        if run_backfill is None:
            run_backfill = self.config.sync.run_backfill
        if run_backfill:
            self.backfill_count = await self.backfill.run_backfill()

        self.consumer_task = asyncio.create_task(self.consumer.run())
        logger.info("Change stream monitoring started")

    async def run(self, run_backfill: Optional[bool] = None) -> None:
        """
        Start and keep running until stopped.

        Raises:
            StartupError: if startup prerequisites fail
            ConsumerFatalError: if the change stream cannot be reopened
        """
        try:
            await self.start(run_backfill)
            if self.consumer_task is not None:
                await self.consumer_task
        finally:
            await self.stop()

    def request_stop(self) -> None:
        """Ask the consumer to stop; safe to call from a signal handler"""
        self.consumer.stop()

    async def stop(self) -> None:
        """Stop the consumer, wait for in-flight work, and disconnect"""
        self.consumer.stop()

        task = self.consumer_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(task), timeout=self.config.sync.shutdown_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for consumer to stop - forcing shutdown")
                task.cancel()
            except Exception as e:
                logger.error(f"Consumer stopped with error: {e}")

        await self.store.disconnect()
        await self.index_client.disconnect()
        if self.is_running:
            self.is_running = False
            logger.info("Sync service stopped")

    async def run_backfill_only(
        self,
        batch_size: Optional[int] = None,
        show_progress: bool = False
    ) -> int:
        """
        Re-project the whole collection without starting the consumer.

        Returns:
            Number of documents successfully indexed
        """
        await self.connect()
        try:
            self.backfill_count = await self.backfill.run_backfill(
                batch_size=batch_size, show_progress=show_progress
            )
            return self.backfill_count
        finally:
            await self.store.disconnect()
            await self.index_client.disconnect()

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information about the service.

        Returns:
            Dictionary with status information
        """
        uptime = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0.0
        last_backfill = self.backfill.last_result
        return {
            "is_running": self.is_running,
            "uptime_seconds": uptime,
            "index_name": self.index_name,
            "collection": self.config.mongo.collection,
            "backfill": last_backfill.to_dict() if last_backfill else None,
            "consumer": self.consumer.get_status(),
            "projector": {
                "upserts": self.projector.upserts,
                "deletes": self.projector.deletes,
                "retry_policy": self.retry_policy.to_dict()
            },
            "dead_letters": [entry.to_dict() for entry in self.dead_letters.entries()]
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
