"""Identity key pair and recipient public-key cache."""

from __future__ import annotations

import logging
from collections.abc import Collection

from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.orm import Session, sessionmaker

from chatterbox_client.models.config_entry import IDENTITY_PRIVATE_KEY, IDENTITY_PUBLIC_KEY
from chatterbox_client.repositories.cache_repo import CacheRepository
from chatterbox_client.services.client import ChatClient
from chatterbox_client.services.crypto import CryptoCodec, CryptoError, InvalidPublicKeyError

logger = logging.getLogger(__name__)


class UnknownRecipientError(KeyError):
    """Raised when no public key can be found for a user."""


class MissingPublicKeyError(CryptoError):
    """Raised when room members have not published a public key.

    Such members could never decrypt the message, so it must not be sent.
    """

    def __init__(self, room_id: str, user_ids: list[str]) -> None:
        super().__init__(
            f"Members of room {room_id} without a public key: {', '.join(user_ids)}"
        )
        self.room_id = room_id
        self.user_ids = tuple(user_ids)


class KeyStore:
    """Owns the local identity key pair and caches other users' public keys.

    The private key is generated once per installation, stored only in the
    local `config` table and never mutated afterwards. Cached public keys are
    added or replaced as rooms are resolved and are never evicted.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        client: ChatClient | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._private_key: rsa.RSAPrivateKey | None = None
        self._public_key_b64: str | None = None
        self._public_keys: dict[str, rsa.RSAPublicKey] = {}

    @property
    def private_key(self) -> rsa.RSAPrivateKey | None:
        """The identity private key, loading it from the cache on first access."""
        if self._private_key is None:
            self.load_private_key()
        return self._private_key

    @property
    def public_key_b64(self) -> str | None:
        """The exported identity public key."""
        if self._public_key_b64 is None:
            self.load_private_key()
        return self._public_key_b64

    def load_private_key(self) -> rsa.RSAPrivateKey | None:
        """Load the stored identity, returning None if none was generated yet."""
        with self._session_factory() as session:
            repo = CacheRepository(session)
            exported = repo.get_config(IDENTITY_PRIVATE_KEY)
            public_b64 = repo.get_config(IDENTITY_PUBLIC_KEY)
        if not exported:
            return None

        private_key = CryptoCodec.import_private_key(exported)
        self._private_key = private_key
        self._public_key_b64 = public_b64 or CryptoCodec.export_public_key(private_key)
        return private_key

    def ensure_identity(self) -> str:
        """Generate and persist the identity key pair if it does not exist yet.

        Returns:
            The exported public key, suitable for registration with the server.
        """
        existing_key = self.load_private_key()
        if existing_key is not None:
            return self._public_key_b64 or CryptoCodec.export_public_key(existing_key)

        private_key = CryptoCodec.generate_identity_keypair()
        public_b64 = CryptoCodec.export_public_key(private_key)
        with self._session_factory.begin() as session:
            repo = CacheRepository(session)
            # Another process may have won the race; keep whichever landed first.
            existing = repo.get_config(IDENTITY_PRIVATE_KEY)
            if existing:
                private_key = CryptoCodec.import_private_key(existing)
                public_b64 = repo.get_config(IDENTITY_PUBLIC_KEY) or CryptoCodec.export_public_key(
                    private_key
                )
            else:
                repo.set_config(IDENTITY_PRIVATE_KEY, CryptoCodec.export_private_key(private_key))
                repo.set_config(IDENTITY_PUBLIC_KEY, public_b64)
                logger.info("Generated new identity key pair")

        self._private_key = private_key
        self._public_key_b64 = public_b64
        return public_b64

    def cache_public_key(self, user_id: str, exported: str) -> rsa.RSAPublicKey:
        """Import an exported key and remember it for `user_id`."""
        key = CryptoCodec.import_public_key(exported)
        self._public_keys[user_id] = key
        return key

    def cached_public_key(self, user_id: str) -> rsa.RSAPublicKey | None:
        return self._public_keys.get(user_id)

    async def refresh_room_members(
        self, room_id: str, *, allow_missing: Collection[str] = ()
    ) -> dict[str, rsa.RSAPublicKey]:
        """Fetch a room's members and their public keys from the server.

        Every member must have published a readable key, except the users in
        `allow_missing`. Valid keys are cached before any error is raised.

        Raises:
            MissingPublicKeyError: If a member has not published a key.
            InvalidPublicKeyError: If a member published an unreadable key.
            ChatClientError: If the membership request fails.
        """
        if self._client is None:
            raise RuntimeError("KeyStore has no client to resolve room members")

        members = await self._client.fetch_members(room_id)
        resolved: dict[str, rsa.RSAPublicKey] = {}
        missing: list[str] = []
        for member in members:
            if not member.public_key:
                if member.user_id not in allow_missing:
                    missing.append(member.user_id)
                continue
            try:
                resolved[member.user_id] = self.cache_public_key(member.user_id, member.public_key)
            except InvalidPublicKeyError as exc:
                raise InvalidPublicKeyError(
                    f"Member {member.user_id} of room {room_id} has an invalid key"
                ) from exc
        if missing:
            logger.warning("Room %s has members without a public key: %s", room_id, missing)
            raise MissingPublicKeyError(room_id, missing)
        return resolved

    async def get_or_fetch_public_key(self, user_id: str, room_id: str) -> rsa.RSAPublicKey:
        """Return a cached public key, resolving the room's members on a miss."""
        key = self._public_keys.get(user_id)
        if key is not None:
            return key

        try:
            await self.refresh_room_members(room_id)
        except MissingPublicKeyError:
            pass
        key = self._public_keys.get(user_id)
        if key is None:
            raise UnknownRecipientError(user_id)
        return key
