"""Hybrid end-to-end encryption for chat messages.

Every message body is encrypted once with a fresh AES-256-GCM session key.
The raw session key is then wrapped with RSA-OAEP (SHA-256) under each
recipient's public key, so the server only ever relays ciphertext and each
member unlocks the message with their own private key.
"""

from __future__ import annotations

import base64
import binascii
import os
from collections.abc import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from chatterbox_client.schemas.content import EncryptedEnvelope

RSA_KEY_SIZE_BITS = 2048
RSA_PUBLIC_EXPONENT = 65537
SESSION_KEY_BITS = 256
SESSION_KEY_BYTES = SESSION_KEY_BITS // 8
NONCE_BYTES = 12


class CryptoError(ValueError):
    """Base exception for envelope encryption failures."""


class NotAddressedToMe(CryptoError):
    """The envelope carries no wrapped key for the local user."""


class KeyUnwrapFailed(CryptoError):
    """The wrapped session key could not be recovered with the private key."""


class DecryptionFailed(CryptoError):
    """The ciphertext failed authentication or was malformed."""


class NoPrivateKeyFound(CryptoError):
    """No identity private key is available on this device."""


class InvalidPublicKeyError(CryptoError):
    """An exported public key could not be imported."""


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.b64decode(data, validate=True)


class CryptoCodec:
    """Envelope encryption primitives.

    Keys are passed in explicitly; the codec holds no key material.
    """

    @staticmethod
    def generate_identity_keypair() -> rsa.RSAPrivateKey:
        """Generate an RSA identity key pair for wrapping session keys."""
        return rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE_BITS,
        )

    @staticmethod
    def export_public_key(key: rsa.RSAPublicKey | rsa.RSAPrivateKey) -> str:
        """Export the public half as base64-encoded SPKI DER."""
        public_key = key.public_key() if isinstance(key, rsa.RSAPrivateKey) else key
        der = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return _b64encode(der)

    @staticmethod
    def import_public_key(exported: str) -> rsa.RSAPublicKey:
        """Import a public key produced by `export_public_key`.

        Raises:
            InvalidPublicKeyError: If the string is not a base64 RSA SPKI key.
        """
        try:
            der = _b64decode(exported.strip())
            key = serialization.load_der_public_key(der)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise InvalidPublicKeyError(f"Invalid public key: {exc}") from exc
        if not isinstance(key, rsa.RSAPublicKey):
            raise InvalidPublicKeyError("Public key is not an RSA key")
        return key

    @staticmethod
    def export_private_key(key: rsa.RSAPrivateKey) -> str:
        """Export a private key as base64 PKCS#8 DER for local storage."""
        der = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return _b64encode(der)

    @staticmethod
    def import_private_key(exported: str) -> rsa.RSAPrivateKey:
        """Import a private key produced by `export_private_key`."""
        try:
            key = serialization.load_der_private_key(_b64decode(exported), password=None)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise NoPrivateKeyFound(f"Stored private key is unreadable: {exc}") from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise NoPrivateKeyFound("Stored private key is not an RSA key")
        return key

    @staticmethod
    def encrypt_envelope(
        plaintext: str, recipients: Mapping[str, rsa.RSAPublicKey]
    ) -> EncryptedEnvelope:
        """Encrypt `plaintext` once and wrap its session key for every recipient.

        Args:
            plaintext: Message text.
            recipients: Public key per user_id. Members left out can never
                decrypt this message.

        Returns:
            Envelope with base64 ciphertext, nonce and wrapped keys.

        Raises:
            ValueError: If `recipients` is empty.
        """
        if not recipients:
            raise ValueError("An envelope needs at least one recipient")

        session_key = AESGCM.generate_key(bit_length=SESSION_KEY_BITS)
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = AESGCM(session_key).encrypt(nonce, plaintext.encode("utf-8"), None)

        oaep = _oaep()
        wrapped = {
            user_id: _b64encode(public_key.encrypt(session_key, oaep))
            for user_id, public_key in recipients.items()
        }
        return EncryptedEnvelope(
            ciphertext=_b64encode(ciphertext),
            iv=_b64encode(nonce),
            keys=wrapped,
        )

    @staticmethod
    def decrypt_envelope(
        envelope: EncryptedEnvelope,
        my_user_id: str,
        my_private_key: rsa.RSAPrivateKey,
    ) -> str:
        """Recover the plaintext of an envelope addressed to `my_user_id`.

        Raises:
            NotAddressedToMe: No wrapped key exists for `my_user_id`.
            KeyUnwrapFailed: The private key does not match the wrapped key.
            DecryptionFailed: Authentication failed or the payload is malformed.
        """
        wrapped_b64 = envelope.keys.get(my_user_id)
        if wrapped_b64 is None:
            raise NotAddressedToMe(f"Envelope has no key for {my_user_id}")

        try:
            session_key = my_private_key.decrypt(_b64decode(wrapped_b64), _oaep())
        except (binascii.Error, ValueError) as exc:
            raise KeyUnwrapFailed("Could not unwrap session key") from exc
        if len(session_key) != SESSION_KEY_BYTES:
            raise KeyUnwrapFailed("Unwrapped session key has the wrong length")

        try:
            nonce = _b64decode(envelope.iv)
            ciphertext = _b64decode(envelope.ciphertext)
            plaintext = AESGCM(session_key).decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, binascii.Error, ValueError) as exc:
            raise DecryptionFailed("Message authentication failed") from exc
