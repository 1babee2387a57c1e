"""
Dict-backed blob store for tests and the `memory` backend.
"""

from __future__ import annotations

from chatchain.storage.base import BlobStore


class InMemoryBlobStore(BlobStore):
    """Blob store that keeps payloads in a process-local dict."""

    backend = "memory"

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    async def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = bytes(data)

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)
