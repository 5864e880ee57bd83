"""
Default configuration values for subscriber-sync.

Centralized defaults that can be overridden by config files or environment variables.
"""

from typing import Any, Dict

# Global default settings
DEFAULT_SETTINGS: Dict[str, Any] = {
    # Document Store (MongoDB replica set)
    "mongo": {
        "uri": "mongodb://localhost:27017/sdrms?replicaSet=sdrms-rs",
        "database": None,  # Taken from the URI
        "collection": "subscribers",
        "server_selection_timeout_ms": 10000,
        "max_await_time_ms": 1000
    },

    # Search Index (OpenSearch)
    "opensearch": {
        "url": "http://localhost:9200",
        "username": None,
        "password": None,
        "verify_certs": True,
        "timeout": 30.0,
        "index_name": "subscribers",
        "number_of_shards": 1,
        "number_of_replicas": 1
    },

    # Backfill and consumer behavior
    "sync": {
        "run_backfill": True,
        "batch_size": 100,
        "reconnect_delay_seconds": 5.0,
        "max_connect_attempts": 5,
        "resume_token_file": None,
        "projection_retries": 0,
        "retry_initial_delay": 0.5,
        "retry_max_delay": 10.0,
        "dead_letter_limit": 1000,
        "shutdown_timeout_seconds": 30.0
    }
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'MONGODB_URI': 'mongo.uri',
    'MONGODB_DATABASE': 'mongo.database',
    'MONGODB_COLLECTION': 'mongo.collection',
    'OPENSEARCH_URL': 'opensearch.url',
    'OPENSEARCH_USERNAME': 'opensearch.username',
    'OPENSEARCH_PASSWORD': 'opensearch.password',
    'OPENSEARCH_VERIFY_CERTS': 'opensearch.verify_certs',
    'OPENSEARCH_TIMEOUT': 'opensearch.timeout',
    'OPENSEARCH_INDEX': 'opensearch.index_name',
    'SYNC_BATCH_SIZE': 'sync.batch_size',
    'SYNC_RECONNECT_DELAY': 'sync.reconnect_delay_seconds',
    'SYNC_MAX_CONNECT_ATTEMPTS': 'sync.max_connect_attempts',
    'SYNC_RUN_BACKFILL': 'sync.run_backfill',
    'SYNC_RESUME_TOKEN_FILE': 'sync.resume_token_file',
    'SYNC_PROJECTION_RETRIES': 'sync.projection_retries'
}

# Values taken verbatim from the environment, never type-converted
STRING_CONFIG_PATHS = {
    'mongo.uri',
    'mongo.database',
    'mongo.collection',
    'opensearch.url',
    'opensearch.username',
    'opensearch.password',
    'opensearch.index_name',
    'sync.resume_token_file'
}

# Logging
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5
