"""Client services: transport, keys, encryption, sync and send."""

from .client import ChatClient, ChatClientError, ChatHTTPError, ChatTransportError
from .crypto import CryptoCodec, CryptoError
from .keystore import KeyStore, MissingPublicKeyError, UnknownRecipientError
from .send_pipeline import SendPipeline, SendResult
from .sync_engine import AppliedDelta, SyncEngine, SyncResult

__all__ = [
    "AppliedDelta",
    "ChatClient", "ChatClientError", "ChatHTTPError", "ChatTransportError",
    "CryptoCodec", "CryptoError",
    "KeyStore", "MissingPublicKeyError", "UnknownRecipientError",
    "SendPipeline", "SendResult",
    "SyncEngine", "SyncResult",
]
