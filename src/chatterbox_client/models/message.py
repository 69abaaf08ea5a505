"""Model describing a message held in the local cache."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from chatterbox_client.db.session import Base


class Message(Base):
    """Message keyed by its room and server-assigned identifier.

    `content` holds the serialized content union. Encrypted envelopes are
    replaced by their plaintext (or a placeholder) before the row is written,
    so the local copy never stores ciphertext the user could read.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_room_id", "room_id"),
        Index("ix_messages_created_at", "created_at"),
    )

    room_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    message_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
