"""
Telegram Bot API client.

A thin async wrapper over the HTTP Bot API using httpx. Only the methods the
bot needs are implemented: long-polling for updates, sending messages and
looking up a member's status for permission checks.
"""

from __future__ import annotations

from typing import Any

import httpx

from chatchain.exceptions import TelegramError
from chatchain.logging import get_logger
from chatchain.types import MemberStatus

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramClient:
    """Async client for the Telegram Bot API."""

    def __init__(
        self,
        token: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = TELEGRAM_API_BASE,
    ) -> None:
        """Initialize the client.

        Args:
            token: Bot API token.
            client: Optional preconfigured HTTP client.
            base_url: Bot API server.
        """
        self._token = token
        self._client = client
        self._base_url = base_url.rstrip("/")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Long polls hold the connection open for up to POLL_TIMEOUT_SECONDS
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=70.0))
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def call(self, method: str, **params: Any) -> Any:
        """Call a Bot API method and return its result.

        Raises:
            TelegramError: On network failure or a non-ok API response.
        """
        url = f"{self._base_url}/bot{self._token}/{method}"
        payload = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._get_client().post(url, json=payload)
            data = response.json()
        except httpx.HTTPError as e:
            raise TelegramError(
                "Telegram request failed",
                context={"method": method, "error": str(e)},
            ) from e
        except ValueError as e:
            raise TelegramError(
                "Telegram returned invalid JSON",
                context={"method": method, "status_code": response.status_code},
            ) from e

        if not data.get("ok"):
            raise TelegramError(
                data.get("description", "Unknown Telegram error"),
                context={
                    "method": method,
                    "error_code": data.get("error_code"),
                    "retry_after": data.get("parameters", {}).get("retry_after"),
                },
            )

        return data.get("result")

    async def get_updates(self, offset: int | None = None, timeout: int = 30) -> list[dict[str, Any]]:
        """Long-poll for new updates."""
        return await self.call(
            "getUpdates",
            offset=offset,
            timeout=timeout,
            allowed_updates=["message"],
        )

    async def send_message(
        self, chat_id: int, text: str, parse_mode: str | None = None
    ) -> dict[str, Any]:
        return await self.call("sendMessage", chat_id=chat_id, text=text, parse_mode=parse_mode)

    async def get_chat_member_status(self, chat_id: int, user_id: int) -> MemberStatus:
        result = await self.call("getChatMember", chat_id=chat_id, user_id=user_id)
        return MemberStatus(result["status"])
