"""
Storage models for Search Index operations.

Handles write results and bulk operation tracking.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


class StorageResult(BaseModel):
    """Result of Search Index operations with detailed metrics"""

    # Operation details
    operation: str  # index, delete, bulk_index, create_index, ...
    index_name: str
    success: bool

    # Performance metrics
    processing_time_ms: float
    affected_count: int = 0
    total_count: int = 0

    # Error handling
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    warnings: List[str] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=datetime.now)

    # Operation-specific data
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('operation')
    @classmethod
    def validate_operation(cls, v: str) -> str:
        """Validate operation type"""
        valid_ops = {
            'index', 'delete', 'get', 'bulk_index', 'count',
            'create_index', 'index_exists'
        }
        if v.lower() not in valid_ops:
            raise ValueError(f'Invalid operation: {v}')
        return v.lower()

    @field_validator('index_name')
    @classmethod
    def validate_index_name(cls, v: str) -> str:
        """Validate index name format"""
        if not v or not v.replace('-', '').replace('_', '').replace('.', '').isalnum():
            raise ValueError('Index name must be alphanumeric with dashes/underscores/dots')
        return v.lower()

    @property
    def success_rate(self) -> float:
        """Calculate success rate for operations"""
        if self.total_count == 0:
            return 1.0 if self.success else 0.0
        return self.affected_count / self.total_count

    @property
    def failed_count(self) -> int:
        """Items that were attempted but not written"""
        return max(self.total_count - self.affected_count, 0)

    @classmethod
    def successful_write(
        cls,
        operation: str,
        index_name: str,
        count: int,
        processing_time_ms: float,
        total_count: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> 'StorageResult':
        """Create successful write result"""
        return cls(
            operation=operation,
            index_name=index_name,
            success=True,
            processing_time_ms=processing_time_ms,
            affected_count=count,
            total_count=count if total_count is None else total_count,
            details=details or {}
        )

    @classmethod
    def successful_delete(
        cls,
        index_name: str,
        count: int,
        processing_time_ms: float
    ) -> 'StorageResult':
        """Create successful delete result"""
        return cls(
            operation='delete',
            index_name=index_name,
            success=True,
            processing_time_ms=processing_time_ms,
            affected_count=count,
            total_count=1
        )

    @classmethod
    def failed_operation(
        cls,
        operation: str,
        index_name: str,
        error: str,
        processing_time_ms: float,
        error_details: Optional[Dict[str, Any]] = None,
        total_count: int = 0
    ) -> 'StorageResult':
        """Create failed operation result"""
        return cls(
            operation=operation,
            index_name=index_name,
            success=False,
            processing_time_ms=processing_time_ms,
            error=error,
            error_details=error_details,
            total_count=total_count
        )
