"""SQLAlchemy models for the Chatterbox local cache."""

from .config_entry import ConfigEntry
from .message import Message
from .room import Room

__all__ = [
    "ConfigEntry",
    "Message",
    "Room",
]
