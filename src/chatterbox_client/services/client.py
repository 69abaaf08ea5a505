"""HTTP client for the Chatterbox server.

This module provides the ChatClient class that implements the request/response
contract the sync engine and send pipeline rely on:

- Sync pulls keyed on the caller identity and cursor
- Message submission
- Room membership and public key lookup
- Display name registration and health checks
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from chatterbox_client.core.settings import ClientConfig
from chatterbox_client.schemas.content import EncryptedEnvelope, PlainContent
from chatterbox_client.schemas.sync import (
    MessagePayload,
    RegisterRequest,
    RoomMember,
    SendReceipt,
    SyncDelta,
    SyncRequest,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-ID"

# HTTP status codes
HTTP_OK = 200
HTTP_MULTIPLE_CHOICES = 300


class ChatClientError(RuntimeError):
    """Base exception raised for server communication failures."""


class ChatTransportError(ChatClientError):
    """Raised when a request never produced a response (DNS, connect, timeout)."""


class ChatHTTPError(ChatClientError):
    """Raised when the server answers with a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatProtocolError(ChatClientError):
    """Raised when a response body does not match the expected schema."""


class ChatClient:
    """Async HTTP client bound to one caller identity."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @property
    def user_id(self) -> str:
        return self.config.user_id

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.api_url,
                    timeout=httpx.Timeout(self.config.http_timeout_seconds),
                    headers={USER_ID_HEADER: self.config.user_id},
                    transport=self._transport,
                )
        return self._client

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        json_data: Any | None = None
        params: Mapping[str, Any] | None = None

    async def _request(self, params: RequestParams) -> httpx.Response:
        client = await self._ensure_client()
        endpoint = f"{params.method} {params.path}"
        start_time = time.monotonic()

        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                params=params.params,
            )
        except httpx.HTTPError as exc:
            logger.debug("%s failed after %.3fs: %s", endpoint, time.monotonic() - start_time, exc)
            raise ChatTransportError(f"{endpoint} failed: {exc}") from exc

        logger.debug(
            "%s -> %d in %.3fs", endpoint, response.status_code, time.monotonic() - start_time
        )
        if not HTTP_OK <= response.status_code < HTTP_MULTIPLE_CHOICES:
            raise ChatHTTPError(
                response.status_code,
                f"{endpoint} responded with {response.status_code}: {response.text[:200]}",
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ChatProtocolError(f"Response is not JSON: {exc}") from exc

    async def pull(self, last_synced_at: datetime | None) -> SyncDelta:
        """Pull rooms and messages newer than `last_synced_at`.

        A `None` cursor asks the server for a full snapshot.
        """
        body = SyncRequest(last_synced_at=last_synced_at).model_dump(mode="json")
        response = await self._request(
            self.RequestParams(method="POST", path="/sync", json_data=body)
        )
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise ChatProtocolError("Malformed sync response: expected a JSON object")

        raw_messages = payload.get("messages") or []
        if not isinstance(raw_messages, list):
            raise ChatProtocolError("Malformed sync response: messages is not a list")
        try:
            delta = SyncDelta.model_validate({**payload, "messages": []})
        except ValidationError as exc:
            raise ChatProtocolError(f"Malformed sync response: {exc}") from exc

        # Rows are validated one by one so a single bad row cannot wedge the cursor.
        for index, raw in enumerate(raw_messages):
            try:
                delta.messages.append(MessagePayload.model_validate(raw))
            except ValidationError as exc:
                delta.skipped_messages += 1
                logger.warning(
                    "Skipping malformed message #%d in sync response: %s",
                    index,
                    exc.errors(include_url=False),
                )
        return delta

    async def send_message(
        self, room_id: str, content: EncryptedEnvelope | PlainContent
    ) -> SendReceipt:
        """Submit message content to a room."""
        response = await self._request(
            self.RequestParams(
                method="POST",
                path=f"/rooms/{room_id}/messages",
                json_data={"content": content.model_dump(mode="json")},
            )
        )
        if not response.content:
            return SendReceipt()
        try:
            return SendReceipt.model_validate(self._json(response))
        except ValidationError as exc:
            raise ChatProtocolError(f"Malformed send response: {exc}") from exc

    async def fetch_members(self, room_id: str) -> list[RoomMember]:
        """Return the members of a room with their exported public keys."""
        response = await self._request(
            self.RequestParams(method="GET", path=f"/rooms/{room_id}/members")
        )
        payload = self._json(response)
        if payload is None:
            return []
        try:
            return [RoomMember.model_validate(item) for item in payload]
        except (ValidationError, TypeError) as exc:
            raise ChatProtocolError(f"Malformed member list: {exc}") from exc

    async def register(self, display_name: str, public_key: str | None = None) -> None:
        """Tell the server who we are and, optionally, publish our public key."""
        body = RegisterRequest(display_name=display_name, public_key=public_key)
        await self._request(
            self.RequestParams(
                method="POST",
                path="/me",
                json_data=body.model_dump(mode="json", exclude_none=True),
            )
        )

    async def health_check(self) -> dict[str, Any]:
        """Perform a health check against the server.

        Returns:
            Dictionary containing health status
        """
        try:
            response = await self._request(self.RequestParams(method="GET", path="/health"))
        except ChatClientError as exc:
            return {"status": "error", "error": str(exc)}
        return {
            "status": "healthy",
            "response_time_ms": response.elapsed.total_seconds() * 1000,
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
