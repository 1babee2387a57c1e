"""
Google Drive blob store.

Stores each blob as a file named after its key inside one Drive folder
(CHAINDUMP_DIR). Talks to the Drive v3 REST API with httpx and authenticates
with a google-auth service account.

The folder id and the access token are resolved lazily on first use and then
shared by every call. Token refresh goes through google-auth's blocking
transport, so it runs in a worker thread under the blocking retry helper.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Protocol

import httpx

from chatchain.exceptions import BlobStoreError, ConfigurationError
from chatchain.logging import get_logger
from chatchain.retry import retry_call
from chatchain.storage.base import BlobStore

logger = get_logger(__name__)

DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
BLOB_MIME_TYPE = "application/octet-stream"


class Credentials(Protocol):
    """The subset of google.auth credentials used here."""

    token: str | None

    @property
    def valid(self) -> bool: ...

    def refresh(self, request: Any) -> None: ...


def service_account_credentials(info: dict[str, Any]) -> Credentials:
    """Build Drive-scoped credentials from service account JSON."""
    from google.oauth2 import service_account

    return service_account.Credentials.from_service_account_info(info, scopes=[DRIVE_SCOPE])


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveBlobStore(BlobStore):
    """Blob store backed by files in a Google Drive folder."""

    backend = "gdrive"

    def __init__(
        self,
        folder_name: str,
        credentials: Credentials,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            folder_name: Name of the Drive folder holding the blobs.
            credentials: google-auth credentials with Drive scope.
            client: Optional preconfigured HTTP client.
        """
        self.folder_name = folder_name
        self._credentials = credentials
        self._client = client
        self._folder_id: str | None = None
        self._init_lock = asyncio.Lock()

    async def init(self) -> None:
        """Resolve the chaindump folder.

        Raises:
            ConfigurationError: If the folder does not exist.
        """
        await self._get_folder_id()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def _get_token(self) -> str:
        async with self._init_lock:
            if not self._credentials.valid:
                from google.auth.transport.requests import Request

                await asyncio.to_thread(
                    retry_call,
                    self._credentials.refresh,
                    Request(),
                    description="gdrive token refresh",
                )
                logger.debug("Refreshed Drive access token")
            if not self._credentials.token:
                raise BlobStoreError(
                    "Drive credentials produced no access token",
                    context={"backend": self.backend},
                )
            return self._credentials.token

    async def _request(
        self,
        method: str,
        url: str,
        *,
        key: str,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        token = await self._get_token()
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}

        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise BlobStoreError(
                "Drive request failed",
                context={"backend": self.backend, "key": key, "method": method, "error": str(e)},
            ) from e

        if allow_missing and response.status_code == 404:
            return None

        if response.is_error:
            raise BlobStoreError(
                "Drive API error",
                context={
                    "backend": self.backend,
                    "key": key,
                    "method": method,
                    "status_code": response.status_code,
                    "body": response.text[:200],
                },
            )
        return response

    async def _list(self, query: str, key: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            f"{DRIVE_API}/files",
            key=key,
            params={"q": query, "fields": "files(id,name)", "spaces": "drive"},
        )
        if response is None:
            return []
        return response.json().get("files", [])

    async def _get_folder_id(self) -> str:
        if self._folder_id is not None:
            return self._folder_id

        query = (
            f"name = '{_quote(self.folder_name)}' and mimeType = '{FOLDER_MIME_TYPE}'"
            " and trashed = false"
        )
        files = await self._list(query, key=self.folder_name)
        if not files:
            raise ConfigurationError(
                "Chaindump folder not found in Drive",
                context={"folder": self.folder_name},
            )

        self._folder_id = files[0]["id"]
        logger.info("Resolved chaindump folder", folder=self.folder_name, folder_id=self._folder_id)
        return self._folder_id

    async def _find_file_id(self, key: str) -> str | None:
        folder_id = await self._get_folder_id()
        query = f"name = '{_quote(key)}' and '{folder_id}' in parents and trashed = false"
        files = await self._list(query, key=key)
        return files[0]["id"] if files else None

    async def get(self, key: str) -> bytes | None:
        file_id = await self._find_file_id(key)
        if file_id is None:
            return None

        response = await self._request(
            "GET",
            f"{DRIVE_API}/files/{file_id}",
            key=key,
            params={"alt": "media"},
            allow_missing=True,
        )
        return response.content if response is not None else None

    async def put(self, key: str, data: bytes) -> None:
        file_id = await self._find_file_id(key)

        if file_id is not None:
            await self._request(
                "PATCH",
                f"{DRIVE_UPLOAD_API}/files/{file_id}",
                key=key,
                params={"uploadType": "media"},
                headers={"Content-Type": BLOB_MIME_TYPE},
                content=data,
            )
        else:
            folder_id = await self._get_folder_id()
            metadata = {"name": key, "parents": [folder_id]}
            body, content_type = _multipart_related(metadata, data)
            await self._request(
                "POST",
                f"{DRIVE_UPLOAD_API}/files",
                key=key,
                params={"uploadType": "multipart"},
                headers={"Content-Type": content_type},
                content=body,
            )

        logger.debug("Uploaded blob", key=key, size=len(data), replaced=file_id is not None)

    async def delete(self, key: str) -> None:
        file_id = await self._find_file_id(key)
        if file_id is None:
            return

        await self._request("DELETE", f"{DRIVE_API}/files/{file_id}", key=key, allow_missing=True)


def _multipart_related(metadata: dict[str, Any], data: bytes) -> tuple[bytes, str]:
    """Encode a Drive multipart upload body.

    Returns:
        The body and its Content-Type header value.
    """
    boundary = f"chatchain-{uuid.uuid4().hex}"
    body = b"".join([
        f"--{boundary}\r\n".encode(),
        b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
        json.dumps(metadata).encode(),
        f"\r\n--{boundary}\r\n".encode(),
        f"Content-Type: {BLOB_MIME_TYPE}\r\n\r\n".encode(),
        data,
        f"\r\n--{boundary}--\r\n".encode(),
    ])
    return body, f"multipart/related; boundary={boundary}"
