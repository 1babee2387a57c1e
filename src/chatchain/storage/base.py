"""
Base class for blob stores.

A blob store is key-addressed durable storage for opaque byte payloads.
Implementations raise BlobStoreError on transport failures; callers wrap
operations with the retry helpers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """Abstract interface for blob store implementations."""

    backend: str = "abstract"

    async def init(self) -> None:
        """Prepare the store for use. Optional."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Get a blob, or None if no blob is stored under key."""
        ...

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Store a blob, replacing any existing one."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a blob. Deleting a missing key is not an error."""
        ...

    async def close(self) -> None:
        """Release any open connections."""
