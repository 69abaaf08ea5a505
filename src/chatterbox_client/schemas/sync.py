"""Request and response schemas for the chat server contract."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class SyncRequest(BaseModel):
    """Body of a sync pull; `None` requests a full snapshot."""

    last_synced_at: datetime | None = None


class RoomPayload(BaseModel):
    """Room state as reported by the server."""

    room_id: str
    name: str = ""
    last_read_message_id: int = 0

    @field_validator("last_read_message_id", mode="before")
    @classmethod
    def _default_read_cursor(cls, value: Any) -> Any:
        return 0 if value is None else value


class MessagePayload(BaseModel):
    """Message as relayed by the server; `content` is left unparsed."""

    room_id: str
    message_id: int
    sender_id: str
    content: Any = None
    created_at: datetime


class SyncDelta(BaseModel):
    """Rooms and messages newer than the caller's cursor."""

    sync_timestamp: datetime
    rooms: list[RoomPayload] = Field(default_factory=list)
    messages: list[MessagePayload] = Field(default_factory=list)
    # Rows the client dropped as malformed; never sent on the wire.
    skipped_messages: int = Field(default=0, exclude=True)

    @field_validator("rooms", "messages", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class RoomMember(BaseModel):
    """Room member and their exported public key."""

    user_id: str
    public_key: str | None = None


class SendMessageRequest(BaseModel):
    """Body of a send request."""

    content: Any


class SendReceipt(BaseModel):
    """Server acknowledgement of a sent message."""

    message_id: int | None = None
    status: str = "sent"


class RegisterRequest(BaseModel):
    """Body of the registration call."""

    display_name: str = Field(..., min_length=1)
    public_key: str | None = None
