"""
Service entry point for subscriber-sync.

Usage:
    python -m subscriber_sync

Equivalent to ``subscriber-sync run``; all configuration comes from the
environment (MONGODB_URI, OPENSEARCH_URL, LOG_LEVEL, ...) or a .env file.
"""

from subscriber_sync.cli import main


if __name__ == "__main__":
    main(args=["run"], prog_name="subscriber-sync")
