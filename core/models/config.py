"""
Configuration models for subscriber-sync.

Handles Document Store connection, Search Index connection, and sync
behavior settings.
"""

import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from pydantic import AliasChoices, BaseModel, Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


INDEX_NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_\-.]*$')


class MongoConfig(BaseModel):
    """Document Store (MongoDB replica set) configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Connection settings
    uri: str = "mongodb://localhost:27017/sdrms?replicaSet=sdrms-rs"
    database: Optional[str] = None  # Falls back to the database in the URI
    collection: str = "subscribers"

    # Timeouts
    server_selection_timeout_ms: int = Field(default=10000, ge=100, le=300000)
    max_await_time_ms: int = Field(default=1000, ge=10, le=60000)

    @field_validator('uri')
    @classmethod
    def validate_uri(cls, v: str) -> str:
        """Validate MongoDB connection string scheme"""
        if not v.startswith(('mongodb://', 'mongodb+srv://')):
            raise ValueError('MongoDB URI must start with mongodb:// or mongodb+srv://')
        return v

    @field_validator('collection')
    @classmethod
    def validate_collection(cls, v: str) -> str:
        if not v or '$' in v:
            raise ValueError('Collection name must be non-empty and must not contain "$"')
        return v


class OpenSearchConfig(BaseModel):
    """Search Index (OpenSearch) configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Connection settings
    url: str = "http://localhost:9200"
    username: Optional[str] = None
    password: Optional[str] = None
    verify_certs: bool = True
    timeout: float = Field(default=30.0, gt=0.0, le=300.0)

    # Index settings
    index_name: str = "subscribers"
    number_of_shards: int = Field(default=1, ge=1, le=64)
    number_of_replicas: int = Field(default=1, ge=0, le=16)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate OpenSearch URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('OpenSearch URL must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('index_name')
    @classmethod
    def validate_index_name(cls, v: str) -> str:
        """OpenSearch index names are lowercase and cannot start with _ - +"""
        v = v.lower()
        if not INDEX_NAME_PATTERN.match(v):
            raise ValueError(f'Invalid index name: {v}')
        return v

    @property
    def use_ssl(self) -> bool:
        return self.url.startswith('https://')

    @property
    def http_auth(self) -> Optional[Tuple[str, str]]:
        """Basic-auth credentials if both parts are configured"""
        if self.username and self.password:
            return (self.username, self.password)
        return None


class SyncConfig(BaseModel):
    """Backfill and change-stream consumer behavior"""
    model_config = ConfigDict(
        validate_assignment=True
    )

    # Backfill
    run_backfill: bool = True
    batch_size: int = Field(default=100, ge=1, le=10000)

    # Consumer
    reconnect_delay_seconds: float = Field(default=5.0, ge=0.0, le=300.0)
    max_connect_attempts: int = Field(default=5, ge=1, le=100)
    resume_token_file: Optional[Path] = None

    # Projection retry policy (1 attempt = log and move on)
    projection_retries: int = Field(default=0, ge=0, le=10)
    retry_initial_delay: float = Field(default=0.5, ge=0.0, le=60.0)
    retry_max_delay: float = Field(default=10.0, ge=0.0, le=300.0)
    dead_letter_limit: int = Field(default=1000, ge=0, le=100000)

    # Shutdown
    shutdown_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)


class ServiceConfig(BaseModel):
    """Complete sync service configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    mongo: MongoConfig = Field(default_factory=MongoConfig)
    opensearch: OpenSearchConfig = Field(default_factory=OpenSearchConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for display or JSON serialization"""
        data = self.model_dump(mode='json')
        if redact and data['opensearch'].get('password'):
            data['opensearch']['password'] = '***'
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServiceConfig':
        """Create from dictionary"""
        return cls(**data)


class GlobalSettings(BaseSettings):
    """Process-level settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="SUBSCRIBER_SYNC_",
        case_sensitive=False,
        populate_by_name=True
    )

    service_name: str = "subscriber-sync"
    config_file: Optional[Path] = None

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        validation_alias=AliasChoices("SUBSCRIBER_SYNC_LOG_LEVEL", "LOG_LEVEL", "log_level")
    )
    log_to_file: bool = False
    log_dir: Path = Path("logs")

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    def get_log_file(self) -> Optional[Path]:
        """Get main log file path if logging to file is enabled"""
        if not self.log_to_file:
            return None
        return self.log_dir / "sync-service.log"

    def get_error_log_file(self) -> Optional[Path]:
        """Get error-only log file path if logging to file is enabled"""
        if not self.log_to_file:
            return None
        return self.log_dir / "sync-errors.log"
