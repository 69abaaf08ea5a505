"""Data access helpers for the local rooms/messages/config cache."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatterbox_client.db.time import as_utc
from chatterbox_client.models import ConfigEntry, Message, Room
from chatterbox_client.models.config_entry import LAST_SYNCED_AT_KEY

__all__ = ["CacheRepository"]


class CacheRepository:
    """Thin wrapper around the cache tables.

    The repository never commits; callers own the transaction so rooms,
    messages and the cursor land together.
    """

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def upsert_room(self, room_id: str, name: str, last_read_message_id: int) -> Room:
        """Insert or replace a room keyed by `room_id`."""
        return self.session.merge(
            Room(room_id=room_id, name=name, last_read_message_id=last_read_message_id)
        )

    def upsert_message(
        self,
        *,
        room_id: str,
        message_id: int,
        sender_id: str,
        content: dict[str, Any],
        created_at: datetime,
    ) -> Message:
        """Insert or replace a message keyed by `(room_id, message_id)`."""
        return self.session.merge(
            Message(
                room_id=room_id,
                message_id=message_id,
                sender_id=sender_id,
                content=content,
                created_at=as_utc(created_at),
            )
        )

    def list_rooms(self) -> list[Room]:
        """Return all cached rooms sorted by name."""
        result = self.session.execute(select(Room).order_by(Room.name, Room.room_id))
        return list(result.scalars())

    def list_messages(self, room_id: str) -> list[Message]:
        """Return a room's messages in display order (oldest first)."""
        result = self.session.execute(
            select(Message)
            .where(Message.room_id == room_id)
            .order_by(Message.created_at.asc(), Message.message_id.asc())
        )
        return list(result.scalars())

    def get_config(self, key: str) -> Any | None:
        """Return a configuration value or None when unset."""
        entry = self.session.get(ConfigEntry, key)
        return entry.value if entry is not None else None

    def set_config(self, key: str, value: Any) -> None:
        """Insert or replace a configuration value."""
        self.session.merge(ConfigEntry(key=key, value=value))

    def get_cursor(self) -> datetime | None:
        """Return the last successfully applied sync timestamp."""
        raw = self.get_config(LAST_SYNCED_AT_KEY)
        if not raw:
            return None
        return as_utc(datetime.fromisoformat(raw))

    def advance_cursor(self, new_cursor: datetime) -> bool:
        """Store `new_cursor` unless it would move the cursor backwards.

        Returns:
            True if the stored cursor changed.
        """
        new_cursor = as_utc(new_cursor)
        current = self.get_cursor()
        if current is not None and new_cursor <= current:
            return False
        self.set_config(LAST_SYNCED_AT_KEY, new_cursor.isoformat())
        return True
