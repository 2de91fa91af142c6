"""
Storage layer for the hash archive.
"""

from .database import DatabaseManager, DatabaseError
from .freshness import FreshnessEngine
from .pool import ResourcePool, ConnectionPool, open_connection_pool

__all__ = [
    'DatabaseManager', 'DatabaseError', 'FreshnessEngine',
    'ResourcePool', 'ConnectionPool', 'open_connection_pool'
]
