"""Storage layer for the agent simulation."""

from .memory_store import MemoryStore
from .postgres_store import PostgresStore

__all__ = [
    "MemoryStore",
    "PostgresStore",
    "create_store",
]


async def create_store(backend: str):
    """Build and connect the configured agent store."""
    if backend == "memory":
        store = MemoryStore()
    elif backend == "postgres":
        store = PostgresStore()
    else:
        raise ValueError(f"Unknown storage_backend: {backend!r}")
    await store.connect()
    return store
