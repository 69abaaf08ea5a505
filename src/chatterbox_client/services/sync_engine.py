"""Incremental synchronization between the server and the local cache.

This module provides the SyncEngine class which pulls deltas from the server
using the stored cursor, decrypts each message inline and applies rooms,
messages and the new cursor to the local cache as one transaction. A crash
before commit leaves the old cursor in place so the same pull is retried;
upserts keyed on primary keys make re-applying a delta harmless.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatterbox_client.core.settings import ClientConfig
from chatterbox_client.models import Message, Room
from chatterbox_client.repositories.cache_repo import CacheRepository
from chatterbox_client.schemas.content import (
    EncryptedEnvelope,
    PlaceholderReason,
    PlainContent,
    UndecryptableContent,
    parse_wire_content,
)
from chatterbox_client.schemas.sync import SyncDelta
from chatterbox_client.services.client import ChatClient, ChatClientError
from chatterbox_client.services.crypto import (
    CryptoCodec,
    DecryptionFailed,
    KeyUnwrapFailed,
    NoPrivateKeyFound,
    NotAddressedToMe,
)
from chatterbox_client.services.keystore import KeyStore

# Configure logger for this module
logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_SECONDS = 0.1
BACKOFF_MULTIPLIER = 4


@dataclass(frozen=True)
class AppliedDelta:
    """Counts of what one apply wrote to the cache."""

    rooms: int
    messages: int
    placeholders: int
    cursor: datetime | None
    cursor_advanced: bool
    skipped: int = 0


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one pull+apply cycle."""

    ok: bool
    applied: AppliedDelta | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> SyncResult:
        return cls(ok=False, error=error)


class SyncEngine:
    """Pulls deltas from the server and merges them into the local cache.

    At most one pull+apply runs at a time; concurrent callers share the
    in-flight run's result instead of racing it for the cursor.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: ChatClient,
        session_factory: sessionmaker[Session],
        keystore: KeyStore,
    ) -> None:
        """Initialize the sync engine.

        Args:
            config: Identity and polling configuration.
            client: Server client bound to the same identity.
            session_factory: Factory for local cache sessions.
            keystore: Source of the identity private key.
        """
        self.config = config
        self.client = client
        self._session_factory = session_factory
        self._keystore = keystore
        self._inflight: asyncio.Task[SyncResult] | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    # Background loop

    async def start(self) -> None:
        """Start the background polling loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background polling loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(MIN_POLL_INTERVAL_SECONDS, float(self.config.sync_interval_seconds))
        backoff = min(interval * BACKOFF_MULTIPLIER, self.config.sync_max_backoff_seconds)

        while not self._stopping.is_set():
            result = await self.sync_once()
            delay = interval if result.ok else max(interval, backoff)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except TimeoutError:
                continue

    # Single-flight pull+apply

    async def sync_once(self, *, fresh: bool = False) -> SyncResult:
        """Pull the next delta and apply it.

        Args:
            fresh: Require a run that starts after this call, e.g. to observe a
                message that was just sent. A run already in flight is awaited
                first and its result discarded.
        """
        while True:
            task = self._inflight
            if task is None or task.done():
                break
            result = await asyncio.shield(task)
            if not fresh:
                return result
            fresh = False

        task = asyncio.create_task(self._pull_and_apply())
        self._inflight = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None

    async def _pull_and_apply(self) -> SyncResult:
        try:
            cursor = await asyncio.to_thread(self.current_cursor)
        except SQLAlchemyError as exc:
            logger.error("Could not read sync cursor: %s", exc, exc_info=True)
            return SyncResult.failure(f"cache error: {exc}")

        try:
            delta = await self.client.pull(cursor)
        except ChatClientError as exc:
            logger.warning("Sync pull failed: %s", exc)
            return SyncResult.failure(str(exc))

        try:
            applied = await asyncio.to_thread(self.apply, delta)
        except SQLAlchemyError as exc:
            logger.error("Error applying sync delta: %s", exc, exc_info=True)
            return SyncResult.failure(f"cache error: {exc}")

        logger.info(
            "Synced. %d rooms, %d new msgs (%d unreadable, %d skipped)",
            applied.rooms,
            applied.messages,
            applied.placeholders,
            applied.skipped,
        )
        return SyncResult(ok=True, applied=applied)

    # Apply

    def apply(self, delta: SyncDelta) -> AppliedDelta:
        """Apply a delta to the cache in one transaction.

        Rooms are upserted by `room_id`, messages by `(room_id, message_id)`
        with envelopes replaced by plaintext or a placeholder, and the cursor
        is advanced last. Any storage error rolls back the whole delta.
        """
        private_key = self._load_private_key()
        placeholders = 0

        with self._session_factory.begin() as session:
            repo = CacheRepository(session)

            for room in delta.rooms:
                repo.upsert_room(room.room_id, room.name, room.last_read_message_id)

            for message in delta.messages:
                content = self._resolve_content(message.content, private_key)
                if isinstance(content, UndecryptableContent):
                    placeholders += 1
                    logger.info(
                        "Message %s/%s stored as placeholder: %s",
                        message.room_id,
                        message.message_id,
                        content.reason.value,
                    )
                repo.upsert_message(
                    room_id=message.room_id,
                    message_id=message.message_id,
                    sender_id=message.sender_id,
                    content=content.model_dump(mode="json"),
                    created_at=message.created_at,
                )

            advanced = repo.advance_cursor(delta.sync_timestamp)
            cursor = repo.get_cursor()

        return AppliedDelta(
            rooms=len(delta.rooms),
            messages=len(delta.messages),
            placeholders=placeholders,
            cursor=cursor,
            cursor_advanced=advanced,
            skipped=delta.skipped_messages,
        )

    def _load_private_key(self) -> rsa.RSAPrivateKey | None:
        try:
            return self._keystore.private_key
        except NoPrivateKeyFound as exc:
            logger.warning("Identity key unavailable: %s", exc)
            return None

    def _resolve_content(
        self, raw: Any, private_key: rsa.RSAPrivateKey | None
    ) -> PlainContent | UndecryptableContent:
        """Turn wire content into what the cache stores for display."""
        try:
            content = parse_wire_content(raw)
        except ValidationError:
            return UndecryptableContent.for_reason(PlaceholderReason.UNRECOGNIZED_CONTENT)

        if isinstance(content, PlainContent):
            return content
        if isinstance(content, EncryptedEnvelope):
            return self._decrypt(content, private_key)
        raise TypeError(f"Unsupported content type: {type(content).__name__}")

    def _decrypt(
        self, envelope: EncryptedEnvelope, private_key: rsa.RSAPrivateKey | None
    ) -> PlainContent | UndecryptableContent:
        if private_key is None:
            return UndecryptableContent.for_reason(PlaceholderReason.NO_PRIVATE_KEY)
        try:
            text = CryptoCodec.decrypt_envelope(envelope, self.config.user_id, private_key)
        except NotAddressedToMe:
            return UndecryptableContent.for_reason(PlaceholderReason.NOT_ADDRESSED_TO_ME)
        except KeyUnwrapFailed:
            return UndecryptableContent.for_reason(PlaceholderReason.KEY_UNWRAP_FAILED)
        except DecryptionFailed:
            return UndecryptableContent.for_reason(PlaceholderReason.DECRYPTION_FAILED)
        return PlainContent(text=text)

    # Read helpers

    def current_cursor(self) -> datetime | None:
        """Return the last successfully applied sync timestamp."""
        with self._session_factory() as session:
            return CacheRepository(session).get_cursor()

    def list_rooms(self) -> list[Room]:
        """Return cached rooms."""
        with self._session_factory() as session:
            return CacheRepository(session).list_rooms()

    def list_messages(self, room_id: str) -> list[Message]:
        """Return a room's cached messages ordered by `created_at` ascending."""
        with self._session_factory() as session:
            return CacheRepository(session).list_messages(room_id)
