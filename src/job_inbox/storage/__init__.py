"""Persistence layer."""

from .connection_pool import ConnectionPool
from .sqlite import SqliteJobRepository

__all__ = ["ConnectionPool", "SqliteJobRepository"]
