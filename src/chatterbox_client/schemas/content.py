"""Message content schemas.

Message content is a tagged union. On the wire a message carries either plain
text or an end-to-end encrypted envelope; in the local cache envelopes are
replaced by the decrypted plaintext or by a typed placeholder describing why
the message cannot be shown.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class PlainContent(BaseModel):
    """Readable message text."""

    model_config = ConfigDict(frozen=True)

    type: Literal["plain"] = "plain"
    text: str


class EncryptedEnvelope(BaseModel):
    """Hybrid-encrypted payload addressed to a fixed set of users."""

    model_config = ConfigDict(frozen=True)

    type: Literal["e2ee"] = "e2ee"
    ciphertext: str = Field(..., description="Base64 AES-GCM ciphertext including the tag")
    iv: str = Field(..., description="Base64 96-bit nonce")
    keys: dict[str, str] = Field(
        ..., description="Base64 RSA-OAEP wrapped session key per recipient user_id"
    )


class PlaceholderReason(str, Enum):
    """Why a cached message is shown as a placeholder."""

    NOT_ADDRESSED_TO_ME = "not_addressed_to_me"
    KEY_UNWRAP_FAILED = "key_unwrap_failed"
    DECRYPTION_FAILED = "decryption_failed"
    NO_PRIVATE_KEY = "no_private_key"
    UNRECOGNIZED_CONTENT = "unrecognized_content"


PLACEHOLDER_TEXT: dict[PlaceholderReason, str] = {
    PlaceholderReason.NOT_ADDRESSED_TO_ME: "🔒 This message was not encrypted for you",
    PlaceholderReason.KEY_UNWRAP_FAILED: "🔒 Could not unlock the message key",
    PlaceholderReason.DECRYPTION_FAILED: "🔒 Decryption Failed",
    PlaceholderReason.NO_PRIVATE_KEY: "🔒 No private key found on this device",
    PlaceholderReason.UNRECOGNIZED_CONTENT: "⚠️ Unsupported message format",
}


class UndecryptableContent(BaseModel):
    """Local placeholder written instead of an unreadable message."""

    model_config = ConfigDict(frozen=True)

    type: Literal["undecryptable"] = "undecryptable"
    reason: PlaceholderReason
    text: str

    @classmethod
    def for_reason(cls, reason: PlaceholderReason) -> UndecryptableContent:
        """Build the placeholder for a failure reason."""
        return cls(reason=reason, text=PLACEHOLDER_TEXT[reason])


WireContent = Annotated[PlainContent | EncryptedEnvelope, Field(discriminator="type")]
MessageContent = Annotated[
    PlainContent | EncryptedEnvelope | UndecryptableContent,
    Field(discriminator="type"),
]

_wire_adapter: TypeAdapter[PlainContent | EncryptedEnvelope] = TypeAdapter(WireContent)
_stored_adapter: TypeAdapter[PlainContent | EncryptedEnvelope | UndecryptableContent] = (
    TypeAdapter(MessageContent)
)


def parse_wire_content(raw: Any) -> PlainContent | EncryptedEnvelope:
    """Parse content as received from the server.

    Bare strings and untagged `{"text": ...}` objects are plain text, the
    shapes older clients send before encryption was added.

    Raises:
        pydantic.ValidationError: If the payload matches no known shape.
    """
    if isinstance(raw, str):
        return PlainContent(text=raw)
    if isinstance(raw, dict) and "type" not in raw and "text" in raw:
        raw = {**raw, "type": "plain"}
    return _wire_adapter.validate_python(raw)


def parse_stored_content(raw: Any) -> PlainContent | EncryptedEnvelope | UndecryptableContent:
    """Parse content previously written to the local cache."""
    return _stored_adapter.validate_python(raw)


def display_text(content: PlainContent | EncryptedEnvelope | UndecryptableContent) -> str:
    """Return the text a user interface should show for a message."""
    if isinstance(content, PlainContent | UndecryptableContent):
        return content.text
    if isinstance(content, EncryptedEnvelope):
        return PLACEHOLDER_TEXT[PlaceholderReason.DECRYPTION_FAILED]
    raise TypeError(f"Unsupported content type: {type(content).__name__}")
