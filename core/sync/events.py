"""
Change Event Models.

Defines the operation types and the parsed form of a raw change stream
document delivered by the Document Store.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

from ..models.documents import document_id_to_index_id


class OperationType(Enum):
    """Change stream operation types handled by the consumer"""
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    INVALIDATE = "invalidate"


class ChangeEvent(BaseModel):
    """
    A single ordered notification of a document mutation.

    ``resume_token`` is the opaque ``_id`` of the change document; storing
    it lets a new stream continue right after this event.
    """

    operation_type: str
    resume_token: Dict[str, Any]

    # Source document identity
    document_key: Any = None
    full_document: Optional[Dict[str, Any]] = None

    # Timing
    cluster_time: Optional[Any] = None
    received_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_change(cls, change: Dict[str, Any]) -> 'ChangeEvent':
        """
        Parse a raw change stream document.

        Raises:
            ValueError: if the change has no resume token or operation type,
                or a document-level change has no usable document key
        """
        if not isinstance(change, dict):
            raise ValueError(f"Change must be a mapping, got {type(change).__name__}")

        resume_token = change.get('_id')
        if not resume_token:
            raise ValueError("Change has no resume token")

        operation_type = change.get('operationType')
        if not operation_type:
            raise ValueError("Change has no operation type")

        document_key = (change.get('documentKey') or {}).get('_id')
        if operation_type != OperationType.INVALIDATE.value and document_key is None:
            raise ValueError(f"{operation_type} change has no document key")
        if document_key is not None:
            # Rejects ids with no usable Search Index form
            document_id_to_index_id(document_key)

        return cls(
            operation_type=operation_type,
            resume_token=resume_token,
            document_key=document_key,
            full_document=change.get('fullDocument'),
            cluster_time=change.get('clusterTime')
        )

    @property
    def operation(self) -> Optional[OperationType]:
        """Known operation type, or None for anything else"""
        try:
            return OperationType(self.operation_type)
        except ValueError:
            return None

    @property
    def document_id(self) -> Optional[str]:
        """Search Index id of the affected document"""
        if self.document_key is None:
            return None
        return document_id_to_index_id(self.document_key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "operation_type": self.operation_type,
            "document_id": self.document_id,
            "has_full_document": self.full_document is not None,
            "received_at": self.received_at.isoformat()
        }

    def __str__(self) -> str:
        return f"{self.operation_type.upper()}: {self.document_id}"
