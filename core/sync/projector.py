"""
Projector: translates Source Documents into Search Index writes.
"""

import logging
from typing import Any, Dict, Optional

from ..errors import ProjectionError
from ..models.documents import SourceDocument, IndexedDocument
from ..models.storage import StorageResult
from ..storage.client import SearchIndexClient
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class Projector:
    """
    Single-document upserts and deletes against the Search Index.

    Both writes are keyed by the Source Document id, so repeating either
    one converges to the same index state.
    """

    def __init__(
        self,
        index_client: SearchIndexClient,
        index_name: str,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.index_client = index_client
        self.index_name = index_name
        self.retry_policy = retry_policy or RetryPolicy()

        self.upserts = 0
        self.deletes = 0

    async def project_upsert(self, doc_id: str, document: Dict[str, Any]) -> StorageResult:
        """
        Write the projection of ``document`` under ``doc_id``, replacing any
        previous Indexed Document.

        Raises:
            ProjectionError: if the document cannot be mapped or written
        """
        try:
            indexed = IndexedDocument.from_source(SourceDocument.from_mongo(document))
        except ValueError as e:
            raise ProjectionError(
                f"Cannot project document {doc_id}: {e}", document_id=doc_id, operation='upsert'
            ) from e

        if indexed.document_id != doc_id:
            logger.warning(
                f"Document key {doc_id} differs from document _id {indexed.document_id}, "
                f"indexing under {doc_id}"
            )
        body = indexed.to_index_body()

        async def write() -> StorageResult:
            result = await self.index_client.index_document(self.index_name, doc_id, body)
            if not result.success:
                raise ProjectionError(result.error or "index write failed",
                                      document_id=doc_id, operation='upsert')
            return result

        result = await self.retry_policy.run(write, description=f"Upsert of {doc_id}")
        self.upserts += 1
        logger.info(f"Document {doc_id} indexed to '{self.index_name}'")
        return result

    async def project_delete(self, doc_id: str) -> StorageResult:
        """
        Remove ``doc_id`` from the Search Index; an absent id is success.

        Raises:
            ProjectionError: if the delete request fails
        """
        async def delete() -> StorageResult:
            result = await self.index_client.delete_document(self.index_name, doc_id)
            if not result.success:
                raise ProjectionError(result.error or "delete failed",
                                      document_id=doc_id, operation='delete')
            return result

        result = await self.retry_policy.run(delete, description=f"Delete of {doc_id}")
        self.deletes += 1
        if result.affected_count:
            logger.info(f"Document {doc_id} deleted from '{self.index_name}'")
        else:
            logger.info(f"Document {doc_id} was already absent from '{self.index_name}'")
        return result
