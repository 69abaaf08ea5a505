"""
Pydantic schemas for the chat server contract and message content.

These schemas define the structure of wire data and of cached message content.
"""

from .content import (
    EncryptedEnvelope,
    MessageContent,
    PlaceholderReason,
    PlainContent,
    UndecryptableContent,
    display_text,
    parse_stored_content,
    parse_wire_content,
)
from .sync import (
    MessagePayload,
    RegisterRequest,
    RoomMember,
    RoomPayload,
    SendMessageRequest,
    SendReceipt,
    SyncDelta,
    SyncRequest,
)

__all__ = [
    "EncryptedEnvelope", "MessageContent", "PlaceholderReason", "PlainContent",
    "UndecryptableContent", "display_text", "parse_stored_content", "parse_wire_content",
    "MessagePayload", "RegisterRequest", "RoomMember", "RoomPayload",
    "SendMessageRequest", "SendReceipt", "SyncDelta", "SyncRequest",
]
