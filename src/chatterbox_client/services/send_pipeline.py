"""Encrypt-and-send flow for outgoing messages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import rsa

from chatterbox_client.core.settings import ClientConfig
from chatterbox_client.schemas.sync import SendReceipt
from chatterbox_client.services.client import ChatClient, ChatClientError
from chatterbox_client.services.crypto import CryptoCodec, CryptoError
from chatterbox_client.services.keystore import KeyStore
from chatterbox_client.services.sync_engine import SyncEngine, SyncResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Outcome of sending one message.

    `sync` is the read-after-write sync that followed a successful submit.
    """

    ok: bool
    receipt: SendReceipt | None = None
    recipients: tuple[str, ...] = ()
    sync: SyncResult | None = None
    error: str | None = None


class SendPipeline:
    """Resolves recipients, encrypts, submits and then syncs.

    The sender's own message only becomes visible once the follow-up sync
    returns it; nothing is inserted into the cache optimistically.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: ChatClient,
        keystore: KeyStore,
        engine: SyncEngine,
        *,
        include_self: bool = True,
    ) -> None:
        self.config = config
        self.client = client
        self._keystore = keystore
        self._engine = engine
        self.include_self = include_self

    async def resolve_recipients(self, room_id: str) -> dict[str, rsa.RSAPublicKey]:
        """Refetch the room's members and build the recipient key map.

        Raises:
            MissingPublicKeyError: If a member other than us has no public key.
        """
        own_key = None
        if self.include_self:
            own_key = await asyncio.to_thread(self._keystore.load_private_key)
        allow_missing = (self.config.user_id,) if own_key is not None else ()

        recipients = await self._keystore.refresh_room_members(
            room_id, allow_missing=allow_missing
        )
        if own_key is not None and self.config.user_id not in recipients:
            recipients[self.config.user_id] = own_key.public_key()
        return recipients

    async def send_text(self, room_id: str, text: str) -> SendResult:
        """Encrypt `text` for every member of `room_id` and send it.

        Failures are logged and reported in the result; nothing is retried.
        """
        try:
            recipients = await self.resolve_recipients(room_id)
            envelope = await asyncio.to_thread(CryptoCodec.encrypt_envelope, text, recipients)
            receipt = await self.client.send_message(room_id, envelope)
        except (ChatClientError, CryptoError, ValueError) as exc:
            logger.error("Send to room %s failed: %s", room_id, exc)
            return SendResult(ok=False, error=str(exc))

        logger.info(
            "Sent message %s to room %s for %d recipients",
            receipt.message_id,
            room_id,
            len(recipients),
        )
        sync = await self._engine.sync_once(fresh=True)
        return SendResult(
            ok=True,
            receipt=receipt,
            recipients=tuple(sorted(recipients)),
            sync=sync,
        )
