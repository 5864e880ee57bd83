"""
OpenSearch index schema definitions and index management for subscriber-sync.

Defines the field mappings of the subscriber index and ensures the index
exists before any projection begins.
"""

from typing import Dict, Any, List, Optional, TYPE_CHECKING
from dataclasses import dataclass, field
import logging

from ..errors import IndexSchemaError

if TYPE_CHECKING:
    from .client import SearchIndexClient

logger = logging.getLogger(__name__)


VALID_FIELD_TYPES = {'text', 'keyword', 'date', 'boolean', 'integer', 'float', 'object'}


@dataclass
class FieldMapping:
    """Mapping declaration for a single index field"""
    field_name: str
    field_type: str  # text, keyword, date, boolean, integer, float, object
    keyword_subfield: bool = False  # text field also exposed as <name>.keyword
    text_subfield: bool = False  # keyword field also exposed as <name>.text
    properties: List['FieldMapping'] = field(default_factory=list)

    def to_opensearch_mapping(self) -> Dict[str, Any]:
        """Convert to an OpenSearch property definition"""
        if self.field_type == 'object':
            return {
                'properties': {
                    sub.field_name: sub.to_opensearch_mapping()
                    for sub in self.properties
                }
            }

        mapping: Dict[str, Any] = {'type': self.field_type}
        if self.field_type == 'float':
            mapping['type'] = 'double'
        if self.field_type == 'text' and self.keyword_subfield:
            mapping['fields'] = {'keyword': {'type': 'keyword', 'ignore_above': 256}}
        if self.field_type == 'keyword' and self.text_subfield:
            mapping['fields'] = {'text': {'type': 'text'}}
        return mapping


@dataclass
class IndexConfig:
    """Complete index configuration"""
    name: str
    fields: List[FieldMapping] = field(default_factory=list)

    # Cluster settings
    number_of_shards: int = 1
    number_of_replicas: int = 1

    def to_opensearch_body(self) -> Dict[str, Any]:
        """Request body for the create-index API"""
        return {
            'settings': {
                'number_of_shards': self.number_of_shards,
                'number_of_replicas': self.number_of_replicas
            },
            'mappings': {
                'properties': {
                    mapping.field_name: mapping.to_opensearch_mapping()
                    for mapping in self.fields
                }
            }
        }


class IndexSchema:
    """Schema definitions for the subscriber index"""

    @staticmethod
    def get_subscriber_index_config(
        index_name: str,
        number_of_shards: int = 1,
        number_of_replicas: int = 1
    ) -> IndexConfig:
        """
        Get configuration for the subscriber index.

        Covers the unified-dataset fields written by bulk ingestion and the
        subscriber-model fields written by the CRUD layer; any other field
        falls through to dynamic mapping.

        Args:
            index_name: Name of the index
            number_of_shards: Primary shard count
            number_of_replicas: Replica count

        Returns:
            Complete index configuration
        """
        address = FieldMapping("address", "object", properties=[
            FieldMapping("street", "text"),
            FieldMapping("city", "text", keyword_subfield=True),
            FieldMapping("district", "text", keyword_subfield=True),
            FieldMapping("state", "keyword"),
            FieldMapping("pincode", "keyword"),
        ])

        fields = [
            # Identifiers
            FieldMapping("subscriber_id", "keyword", text_subfield=True),
            FieldMapping("source_provider", "keyword"),

            # Personal information
            FieldMapping("full_name", "text", keyword_subfield=True),
            FieldMapping("subscriberName", "text", keyword_subfield=True),
            FieldMapping("fatherName", "text", keyword_subfield=True),
            FieldMapping("gender", "keyword"),
            FieldMapping("dateOfBirth", "date"),

            # Contact
            FieldMapping("primary_phone", "keyword", text_subfield=True),
            FieldMapping("mobileNumber", "keyword", text_subfield=True),
            FieldMapping("email", "keyword"),
            address,

            # Service
            FieldMapping("service_type", "keyword"),
            FieldMapping("plan_name", "text"),
            FieldMapping("status", "keyword"),
            FieldMapping("ingestion_date", "date"),
            FieldMapping("simDetails", "object", properties=[
                FieldMapping("simId", "keyword"),
                FieldMapping("status", "keyword"),
                FieldMapping("connectionType", "keyword"),
                FieldMapping("activationDate", "date"),
            ]),
            FieldMapping("deviceInfo", "object", properties=[
                FieldMapping("imei", "keyword"),
                FieldMapping("deviceModel", "keyword"),
                FieldMapping("deviceBrand", "keyword"),
            ]),
            FieldMapping("operatorDetails", "object", properties=[
                FieldMapping("operatorName", "keyword"),
                FieldMapping("circle", "keyword"),
                FieldMapping("serviceProvider", "keyword"),
            ]),

            # Fraud flags
            FieldMapping("fraudFlags", "object", properties=[
                FieldMapping("isSuspicious", "boolean"),
                FieldMapping("suspiciousReasons", "keyword"),
                FieldMapping("flaggedDate", "date"),
                FieldMapping("isVerified", "boolean"),
            ]),

            # Audit metadata
            FieldMapping("createdAt", "date"),
            FieldMapping("updatedAt", "date"),
        ]

        return IndexConfig(
            name=index_name,
            fields=fields,
            number_of_shards=number_of_shards,
            number_of_replicas=number_of_replicas
        )

    @staticmethod
    def validate_index_config(config: IndexConfig) -> List[str]:
        """
        Validate index configuration.

        Args:
            config: Index configuration to validate

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not config.name:
            errors.append("Index name cannot be empty")
        elif config.name != config.name.lower() or config.name[0] in '_-+':
            errors.append(f"Invalid index name: {config.name}")

        if config.number_of_shards < 1:
            errors.append("Shard count must be at least 1")

        if config.number_of_replicas < 0:
            errors.append("Replica count cannot be negative")

        errors.extend(IndexSchema._validate_fields(config.fields, prefix=""))
        return errors

    @staticmethod
    def _validate_fields(fields: List[FieldMapping], prefix: str) -> List[str]:
        errors = []
        seen = set()
        for mapping in fields:
            path = f"{prefix}{mapping.field_name}"
            if mapping.field_name in seen:
                errors.append(f"Duplicate field: {path}")
            seen.add(mapping.field_name)

            if mapping.field_type not in VALID_FIELD_TYPES:
                errors.append(f"Invalid type '{mapping.field_type}' for field {path}")
            elif mapping.field_type == 'object':
                if not mapping.properties:
                    errors.append(f"Object field {path} has no properties")
                errors.extend(IndexSchema._validate_fields(mapping.properties, prefix=f"{path}."))
            elif mapping.properties:
                errors.append(f"Non-object field {path} cannot declare properties")
        return errors


class IndexSchemaManager:
    """Creates the target index before backfill or live projection"""

    def __init__(self, client: 'SearchIndexClient'):
        self.client = client

    async def ensure_index(self, index_name: str, config: Optional[IndexConfig] = None) -> bool:
        """
        Make sure the named index exists.

        An existing index is left untouched even if its mappings differ;
        reconciling them is an administration task.

        Args:
            index_name: Index to check or create
            config: Mapping definition used when the index is absent

        Returns:
            True if the index was created, False if it already existed

        Raises:
            IndexSchemaError: if the index is absent and cannot be created
        """
        if config is None:
            config = IndexSchema.get_subscriber_index_config(index_name)
        elif config.name != index_name:
            config = IndexConfig(
                name=index_name,
                fields=config.fields,
                number_of_shards=config.number_of_shards,
                number_of_replicas=config.number_of_replicas
            )

        errors = IndexSchema.validate_index_config(config)
        if errors:
            raise IndexSchemaError(f"Invalid index config: {'; '.join(errors)}")

        exists = await self.client.index_exists(index_name)
        if exists.success and exists.details.get('exists'):
            logger.info(f"Index '{index_name}' already exists")
            return False

        result = await self.client.create_index(config)
        if not result.success:
            raise IndexSchemaError(f"Failed to create index '{index_name}': {result.error}")

        created = result.affected_count > 0
        if created:
            logger.info(f"Created index '{index_name}' with {len(config.fields)} mapped fields")
        else:
            logger.info(f"Index '{index_name}' was created concurrently, keeping existing mapping")
        return created
