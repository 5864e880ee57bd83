"""
Backfill synchronization with progress tracking for subscriber-sync.

Projects every pre-existing Source Document into the Search Index in
bulk batches before live change-stream tailing begins.
"""

import logging
import time
from typing import List, Dict, Any, Optional, Callable, Tuple, TYPE_CHECKING
from dataclasses import dataclass, field

from opensearchpy.exceptions import SerializationError
from opensearchpy.serializer import JSONSerializer
from tqdm.asyncio import tqdm

from .client import SearchIndexClient
from ..models.documents import SourceDocument, IndexedDocument

if TYPE_CHECKING:
    from ..source.client import DocumentStoreClient

logger = logging.getLogger(__name__)


@dataclass
class BackfillProgress:
    """Progress information reported after every bulk call"""
    total_documents: int
    processed_documents: int
    synced_documents: int
    failed_documents: int
    current_batch: int
    batch_size: int
    batch_synced: int
    elapsed_time: float
    documents_per_second: float

    @property
    def progress_percentage(self) -> float:
        """Calculate progress percentage"""
        if self.total_documents == 0:
            return 100.0
        return min((self.processed_documents / self.total_documents) * 100, 100.0)


@dataclass
class BackfillResult:
    """Result of a backfill run"""
    index_name: str
    total_documents: int = 0
    synced_documents: int = 0
    failed_documents: int = 0
    skipped_documents: int = 0
    total_batches: int = 0
    failed_batches: int = 0
    failed_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_time: float = 0.0

    @property
    def success_rate(self) -> float:
        """Calculate success rate"""
        if self.total_documents == 0:
            return 100.0
        return (self.synced_documents / self.total_documents) * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "index_name": self.index_name,
            "total_documents": self.total_documents,
            "synced_documents": self.synced_documents,
            "failed_documents": self.failed_documents,
            "skipped_documents": self.skipped_documents,
            "total_batches": self.total_batches,
            "failed_batches": self.failed_batches,
            "success_rate": self.success_rate,
            "total_time_s": self.total_time,
            "errors": self.errors
        }


class BackfillSynchronizer:
    """
    Bulk projection of the whole collection into the Search Index.

    Features:
    - One bulk request per batch, ``_id``-ordered scan
    - Progress logged and reported after every bulk call
    - Item failures and whole-batch failures logged and skipped
    - Optional tqdm progress bar for interactive runs
    """

    def __init__(
        self,
        store: 'DocumentStoreClient',
        index_client: SearchIndexClient,
        index_name: str,
        batch_size: int = 100
    ):
        """
        Initialize backfill synchronizer.

        Args:
            store: Document Store client to read from
            index_client: Search Index client to write to
            index_name: Target index
            batch_size: Documents per bulk request
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")

        self.store = store
        self.index_client = index_client
        self.index_name = index_name
        self.batch_size = batch_size
        self._serializer = JSONSerializer()

        self.last_result: Optional[BackfillResult] = None
        self._progress_callbacks: List[Callable[[BackfillProgress], None]] = []

    def add_progress_callback(
        self,
        callback: Callable[[BackfillProgress], None]
    ) -> None:
        """Add progress callback function"""
        self._progress_callbacks.append(callback)

    def remove_progress_callback(
        self,
        callback: Callable[[BackfillProgress], None]
    ) -> None:
        """Remove progress callback function"""
        if callback in self._progress_callbacks:
            self._progress_callbacks.remove(callback)

    async def run_backfill(
        self,
        batch_size: Optional[int] = None,
        show_progress: bool = False
    ) -> int:
        """
        Project every Source Document into the Search Index.

        Args:
            batch_size: Override of the configured batch size
            show_progress: Whether to show a progress bar

        Returns:
            Number of documents successfully indexed
        """
        batch_size = batch_size or self.batch_size
        start_time = time.time()
        result = BackfillResult(index_name=self.index_name)

        total_documents = await self.store.count_documents()
        logger.info(
            f"Starting backfill of {total_documents} documents into "
            f"'{self.index_name}' (batch size {batch_size})"
        )

        pbar = None
        if show_progress:
            pbar = tqdm(
                total=total_documents,
                desc="Backfilling",
                unit="docs",
                unit_scale=True
            )

        try:
            async for raw_batch in self.store.iter_batches(batch_size):
                result.total_batches += 1
                result.total_documents += len(raw_batch)

                documents = self._project_batch(raw_batch, result)
                batch_synced = 0
                if documents:
                    batch_synced = await self._write_batch(documents, result)
                result.synced_documents += batch_synced

                logger.info(
                    f"Synced {batch_synced} documents in batch {result.total_batches} "
                    f"({result.synced_documents} total)"
                )

                elapsed = time.time() - start_time
                progress = BackfillProgress(
                    total_documents=total_documents,
                    processed_documents=result.total_documents,
                    synced_documents=result.synced_documents,
                    failed_documents=result.failed_documents,
                    current_batch=result.total_batches,
                    batch_size=len(raw_batch),
                    batch_synced=batch_synced,
                    elapsed_time=elapsed,
                    documents_per_second=result.total_documents / elapsed if elapsed > 0 else 0.0
                )
                for callback in self._progress_callbacks:
                    try:
                        callback(progress)
                    except Exception as e:
                        logger.warning(f"Progress callback failed: {e}")

                if pbar:
                    pbar.update(len(raw_batch))
                    pbar.set_postfix({'synced': result.synced_documents})
        finally:
            if pbar:
                pbar.close()

        result.total_time = time.time() - start_time
        self.last_result = result

        logger.info(
            f"Backfill completed: {result.synced_documents}/{result.total_documents} documents "
            f"in {result.total_time:.2f}s ({result.failed_batches} failed batches, "
            f"{result.skipped_documents} skipped)"
        )
        return result.synced_documents

    def _project_batch(
        self,
        raw_batch: List[Dict[str, Any]],
        result: BackfillResult
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Map raw documents to (id, body) pairs, skipping unusable ones"""
        documents = []
        for raw in raw_batch:
            try:
                indexed = IndexedDocument.from_source(SourceDocument.from_mongo(raw))
            except ValueError as e:
                result.skipped_documents += 1
                logger.warning(f"Skipping document during backfill: {e}")
                continue

            body = indexed.to_index_body()
            try:
                # One unencodable body would otherwise fail the whole bulk request
                self._serializer.dumps(body)
            except SerializationError as e:
                result.skipped_documents += 1
                logger.warning(
                    f"Skipping document {indexed.document_id} during backfill, body is not serializable: {e}"
                )
                continue
            documents.append((indexed.document_id, body))
        return documents

    async def _write_batch(
        self,
        documents: List[Tuple[str, Dict[str, Any]]],
        result: BackfillResult
    ) -> int:
        """Issue one bulk request and record its failures"""
        write = await self.index_client.bulk_index(self.index_name, documents)

        if not write.success:
            result.failed_batches += 1
            result.failed_documents += len(documents)
            result.failed_ids.extend(document_id for document_id, _ in documents)
            result.errors.append(write.error or "bulk request failed")
            logger.error(
                f"Backfill batch {result.total_batches} failed, skipping "
                f"{len(documents)} documents: {write.error}"
            )
            return 0

        failed_ids = write.details.get('failed_ids', [])
        item_errors = write.details.get('item_errors', {})
        for document_id in failed_ids:
            logger.error(
                f"Failed to index document {document_id} during backfill: "
                f"{item_errors.get(document_id)}"
            )
        result.failed_documents += len(failed_ids)
        result.failed_ids.extend(failed_ids)
        return write.affected_count
