"""Database connection management."""

from metalpulse.core.data.storage.pool import DEFAULT_POOL_SIZE, ConnectionPool, PoolConfig

__all__ = ["ConnectionPool", "DEFAULT_POOL_SIZE", "PoolConfig"]
