"""Database connection module for the commentable API."""

from src.core.database.async_cassandra import (
    AsyncCassandraConnection,
    get_async_cassandra_session,
    init_async_cassandra,
    shutdown_async_cassandra,
)
from src.core.errors import StorageError


__all__ = [
    "AsyncCassandraConnection",
    "StorageError",
    "get_async_cassandra_session",
    "init_async_cassandra",
    "shutdown_async_cassandra",
]
