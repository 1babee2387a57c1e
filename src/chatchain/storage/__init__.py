"""
Storage package for conversation persistence.

This package provides blob stores keyed by conversation id:
- InMemoryBlobStore (memory.py): process-local, for tests
- SQLiteBlobStore (sqlite_store.py): local database via aiosqlite
- DriveBlobStore (gdrive.py): files in a Google Drive folder
"""

from __future__ import annotations

from chatchain.config import Settings
from chatchain.exceptions import ConfigurationError
from chatchain.storage.base import BlobStore
from chatchain.storage.memory import InMemoryBlobStore
from chatchain.storage.sqlite_store import SQLiteBlobStore


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the blob store selected by BLOB_BACKEND.

    The store is not initialized; call `await store.init()` before use.
    """
    if settings.BLOB_BACKEND == "gdrive":
        from chatchain.storage.gdrive import DriveBlobStore, service_account_credentials

        if not settings.CHAINDUMP_DIR:
            raise ConfigurationError("BLOB_BACKEND=gdrive requires: CHAINDUMP_DIR")
        credentials = service_account_credentials(settings.gdrive_service_account_info())
        return DriveBlobStore(settings.CHAINDUMP_DIR, credentials)

    if settings.BLOB_BACKEND == "memory":
        return InMemoryBlobStore()

    return SQLiteBlobStore(settings.BLOB_DB_PATH)


__all__ = ["BlobStore", "InMemoryBlobStore", "SQLiteBlobStore", "create_blob_store"]
