"""Model describing a chat room mirrored from the server."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from chatterbox_client.db.session import Base


class Room(Base):
    """Room the local user belongs to.

    Rows are only created or updated by applying a sync delta; the client never
    invents rooms on its own.
    """

    __tablename__ = "rooms"

    room_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Server-tracked read cursor, 0 when nothing was read yet.
    last_read_message_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
