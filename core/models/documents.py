"""
Document models for the subscriber projection.

A SourceDocument is the authoritative record read from the Document Store;
an IndexedDocument is its projection into the Search Index schema.
"""

import base64
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from bson import Binary, Code, DBRef, Decimal128, MaxKey, MinKey, ObjectId, Regex, Timestamp
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator


# Storage-internal fields never copied into the index
INTERNAL_FIELDS = frozenset({'_id', '__v'})

# Flat top-level keys folded into the nested address object
ADDRESS_KEYS = ('street', 'city', 'district', 'state', 'pincode')

# Canonical index field -> source keys checked in order
FIELD_ALIASES: Dict[str, List[str]] = {
    'full_name': ['full_name', 'name', 'subscriberName'],
    'primary_phone': ['primary_phone', 'phone', 'mobileNumber'],
    'email': ['email', 'emailId'],
}


def document_id_to_index_id(document_id: Any) -> str:
    """
    Convert a Document Store ``_id`` to the Search Index document id.

    This is the canonical conversion used by both the backfill and the live
    projection so that an Indexed Document always shares its Source
    Document's id.

    Example:
        >>> document_id_to_index_id(ObjectId("64b7f0c2e4b0a1a2b3c4d5e6"))
        '64b7f0c2e4b0a1a2b3c4d5e6'
    """
    if document_id is None:
        raise ValueError("Document id cannot be None")
    index_id = str(document_id)
    if not index_id.strip():
        raise ValueError("Document id cannot be empty")
    return index_id


def normalize_bson_value(value: Any) -> Any:
    """
    Recursively convert BSON-only types into JSON-serializable values.

    Binary data becomes base64 text, a Regex its pattern, a Timestamp its
    datetime, a DBRef a ``{'$ref', '$id'}`` object and MinKey/MaxKey None.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return str(value.to_decimal())
    if isinstance(value, (Binary, bytes)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if isinstance(value, Regex):
        return value.pattern
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if isinstance(value, Code):
        return str(value)
    if isinstance(value, DBRef):
        return {'$ref': value.collection, '$id': normalize_bson_value(value.id)}
    if isinstance(value, (MinKey, MaxKey)):
        return None
    if isinstance(value, dict):
        return {key: normalize_bson_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_bson_value(item) for item in value]
    return value


class SourceDocument(BaseModel):
    """Subscriber record as stored in the Document Store"""
    model_config = ConfigDict(frozen=True)

    id: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    version: Optional[int] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate document id is not empty"""
        if not v.strip():
            raise ValueError('Document id cannot be empty')
        return v

    @classmethod
    def from_mongo(cls, raw: Optional[Dict[str, Any]]) -> 'SourceDocument':
        """
        Build from a raw MongoDB document.

        Raises:
            ValueError: if the document is missing or has no ``_id``
        """
        if not raw:
            raise ValueError('Source document is empty')
        if raw.get('_id') is None:
            raise ValueError('Source document has no _id')

        fields = {
            key: normalize_bson_value(value)
            for key, value in raw.items()
            if key not in INTERNAL_FIELDS
        }
        version = raw.get('__v')
        return cls(
            id=document_id_to_index_id(raw['_id']),
            fields=fields,
            version=version if isinstance(version, int) else None
        )


class IndexedAddress(BaseModel):
    """Nested address sub-document of the index schema"""
    model_config = ConfigDict(extra='allow', coerce_numbers_to_str=True)

    street: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class IndexedDocument(BaseModel):
    """
    Projection of a SourceDocument into the Search Index schema.

    Every source field except the storage-internal ones is copied as-is;
    the declared fields below are the canonical ones the index mapping
    types explicitly and are derived from common aliases when absent.
    """
    model_config = ConfigDict(extra='allow', coerce_numbers_to_str=True)

    subscriber_id: Optional[str] = None
    full_name: Optional[str] = None
    primary_phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[IndexedAddress] = None
    service_type: Optional[str] = None
    plan_name: Optional[str] = None
    status: Optional[str] = None
    ingestion_date: Optional[Union[datetime, str]] = None

    _document_id: str = PrivateAttr(default='')

    @property
    def document_id(self) -> str:
        """Search Index id, identical to the Source Document id"""
        return self._document_id

    @classmethod
    def from_source(cls, source: SourceDocument) -> 'IndexedDocument':
        """Map a SourceDocument into the index shape"""
        data = dict(source.fields)

        if data.get('subscriber_id') is None:
            data['subscriber_id'] = data.get('id', source.id)

        for target, aliases in FIELD_ALIASES.items():
            if data.get(target) is None:
                value = _first_present(data, aliases)
                if value is not None:
                    data[target] = value

        if data.get('full_name') is None:
            parts = [data.get('first_name'), data.get('last_name')]
            joined = ' '.join(str(part).strip() for part in parts if part)
            if joined:
                data['full_name'] = joined

        address = _build_address(data)
        if address:
            data['address'] = address
        else:
            data.pop('address', None)

        document = cls.model_validate(data)
        document._document_id = source.id
        return document

    def to_index_body(self) -> Dict[str, Any]:
        """Serialize the document body written to the Search Index"""
        return self.model_dump(exclude_unset=True)


def _first_present(data: Dict[str, Any], keys: List[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != '':
            return value
    return None


def _build_address(data: Dict[str, Any]) -> Dict[str, Any]:
    """Merge nested address fields with flat top-level ones"""
    raw = data.get('address')
    if isinstance(raw, dict):
        address = dict(raw)
    elif isinstance(raw, str) and raw.strip():
        address = {'street': raw}
    else:
        address = {}

    for key in ADDRESS_KEYS:
        if address.get(key) is None and data.get(key) is not None:
            address[key] = data[key]

    return address
