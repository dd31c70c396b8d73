"""
Database Connection Pool

Reuses SQLite repository connections across web requests so each request
does not pay for opening the database and applying the schema.
"""

import logging
import sqlite3
from contextlib import contextmanager
from queue import Empty, Queue
from threading import Lock
from typing import Iterator

from job_inbox.core.config import StorageSettings

from .sqlite import SqliteJobRepository

LOGGER = logging.getLogger(__name__)


class ConnectionPool:
    """Thread-safe pool of :class:`SqliteJobRepository` instances."""

    def __init__(self, settings: StorageSettings, pool_size: int = 5):
        """
        Initialize connection pool.

        Args:
            settings: Storage settings containing database path
            pool_size: Maximum number of connections in pool (default: 5)
        """
        if pool_size <= 0:
            raise ValueError("pool_size must be positive")
        self.settings = settings
        self.pool_size = pool_size
        self._pool: Queue[SqliteJobRepository] = Queue(maxsize=pool_size)
        self._lock = Lock()
        self._closed = False

        for _ in range(pool_size):
            self._pool.put(self._open())

        LOGGER.info("Initialized connection pool with %d connections", pool_size)

    def _open(self) -> SqliteJobRepository:
        with self._lock:
            if self._closed:
                raise RuntimeError("Connection pool is closed")
            return SqliteJobRepository(self.settings)

    @staticmethod
    def _is_healthy(repository: SqliteJobRepository) -> bool:
        try:
            repository.list_accounts("")
            return True
        except (sqlite3.Error, RuntimeError):
            LOGGER.warning("Connection validation failed, will create new connection")
            return False

    @contextmanager
    def acquire(self, timeout: float = 10.0) -> Iterator[SqliteJobRepository]:
        """
        Acquire a repository from the pool.

        Raises:
            RuntimeError: If pool is closed
            TimeoutError: If no connection available within timeout
        """
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        try:
            repository = self._pool.get(timeout=timeout)
        except Empty as exc:
            raise TimeoutError(
                f"Could not acquire connection within {timeout} seconds"
            ) from exc

        try:
            if not self._is_healthy(repository):
                repository.close()
                repository = self._open()
            yield repository
        finally:
            if self._closed:
                repository.close()
            else:
                self._pool.put(repository)

    def close(self) -> None:
        """Close all connections in the pool."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

            closed_count = 0
            while True:
                try:
                    repository = self._pool.get_nowait()
                except Empty:
                    break
                repository.close()
                closed_count += 1

            LOGGER.info("Closed connection pool (%d connections closed)", closed_count)

    def __enter__(self):
        """Enter context manager scope."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager scope and close pool."""
        self.close()

    @property
    def size(self) -> int:
        """Get number of idle connections."""
        return self._pool.qsize()

    @property
    def is_closed(self) -> bool:
        """Check if pool is closed."""
        return self._closed
