"""Key-value configuration rows stored next to the cached data."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from chatterbox_client.db.session import Base

# Well-known keys
LAST_SYNCED_AT_KEY = "last_synced_at"
IDENTITY_PRIVATE_KEY = "identity_private_key"
IDENTITY_PUBLIC_KEY = "identity_public_key"


class ConfigEntry(Base):
    """Single configuration value, e.g. the sync cursor or identity key."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
