"""
Subscriber Sync - change-data-capture from the subscriber collection into
the OpenSearch subscriber index.
"""

from core import __version__

__all__ = ["__version__"]
