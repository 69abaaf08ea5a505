"""In-memory relay server implementing the Chatterbox HTTP contract.

The relay stores whatever content clients send, encrypted envelopes included,
and never looks inside it. It is meant for local development and for driving
the client end to end in tests.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status

from chatterbox_client.db.time import as_utc, utcnow
from chatterbox_client.schemas.sync import (
    MessagePayload,
    RegisterRequest,
    RoomMember,
    RoomPayload,
    SendMessageRequest,
    SendReceipt,
    SyncDelta,
    SyncRequest,
)

TICK = timedelta(microseconds=1)
MICROS_PER_SECOND = 1_000_000


@dataclass
class RelayUser:
    user_id: str
    display_name: str | None = None
    public_key: str | None = None


@dataclass
class RelayRoom:
    room_id: str
    name: str
    # user_id -> last read message id
    members: dict[str, int] = field(default_factory=dict)


@dataclass
class RelayMessage:
    room_id: str
    message_id: int
    sender_id: str
    content: Any
    created_at: datetime


class RelayState:
    """Users, rooms and messages held by the relay.

    Timestamps come from a strictly increasing clock so that a message is
    never stamped at or before a `sync_timestamp` that was already handed out.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._last_tick: datetime | None = None
        self.users: dict[str, RelayUser] = {}
        self.rooms: dict[str, RelayRoom] = {}
        self.messages: list[RelayMessage] = []
        self._last_message_id: dict[str, int] = {}

    def tick(self) -> datetime:
        now = as_utc(self._clock())
        if self._last_tick is not None and now <= self._last_tick:
            now = self._last_tick + TICK
        self._last_tick = now
        return now

    def register(
        self, user_id: str, display_name: str | None = None, public_key: str | None = None
    ) -> RelayUser:
        user = self.users.setdefault(user_id, RelayUser(user_id=user_id))
        if display_name is not None:
            user.display_name = display_name
        if public_key is not None:
            user.public_key = public_key
        return user

    def seed_room(self, room_id: str, name: str, members: Iterable[str]) -> RelayRoom:
        room = self.rooms.setdefault(room_id, RelayRoom(room_id=room_id, name=name))
        room.name = name
        for user_id in members:
            room.members.setdefault(user_id, 0)
        return room

    def members_of(self, room_id: str) -> list[RoomMember]:
        room = self.rooms[room_id]
        result = []
        for user_id in room.members:
            user = self.users.get(user_id)
            result.append(
                RoomMember(user_id=user_id, public_key=user.public_key if user else None)
            )
        return result

    def add_message(self, room_id: str, sender_id: str, content: Any) -> RelayMessage:
        created_at = self.tick()
        micros = int(created_at.timestamp() * MICROS_PER_SECOND)
        message_id = max(self._last_message_id.get(room_id, 0) + 1, micros)
        self._last_message_id[room_id] = message_id
        message = RelayMessage(
            room_id=room_id,
            message_id=message_id,
            sender_id=sender_id,
            content=content,
            created_at=created_at,
        )
        self.messages.append(message)
        return message

    def delta_for(self, user_id: str, since: datetime | None) -> SyncDelta:
        """Return the caller's rooms and their messages newer than `since`."""
        now = self.tick()
        my_rooms = [room for room in self.rooms.values() if user_id in room.members]
        room_ids = {room.room_id for room in my_rooms}
        since_utc = as_utc(since) if since is not None else None

        messages = [
            message
            for message in self.messages
            if message.room_id in room_ids
            and (since_utc is None or message.created_at > since_utc)
        ]
        messages.sort(key=lambda message: message.created_at)

        return SyncDelta(
            sync_timestamp=now,
            rooms=[
                RoomPayload(
                    room_id=room.room_id,
                    name=room.name,
                    last_read_message_id=room.members[user_id],
                )
                for room in my_rooms
            ],
            messages=[
                MessagePayload(
                    room_id=message.room_id,
                    message_id=message.message_id,
                    sender_id=message.sender_id,
                    content=message.content,
                    created_at=message.created_at,
                )
                for message in messages
            ],
        )


router = APIRouter(prefix="/api", tags=["relay"])


def get_state(request: Request) -> RelayState:
    """Return the relay state attached to the running app."""
    return request.app.state.relay


def get_caller(x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None) -> str:
    """Return the caller identity from the X-User-ID header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    return x_user_id


StateDep = Annotated[RelayState, Depends(get_state)]
CallerDep = Annotated[str, Depends(get_caller)]


def _require_room(state: RelayState, room_id: str) -> RelayRoom:
    room = state.rooms.get(room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


@router.get("/health")
async def health() -> dict[str, str]:
    """Report that the relay is up."""
    return {"status": "ok"}


@router.post("/me")
async def register(body: RegisterRequest, caller: CallerDep, state: StateDep) -> dict[str, str]:
    """Record the caller's display name and public key."""
    state.register(caller, display_name=body.display_name, public_key=body.public_key)
    return {"status": "ok"}


@router.post("/sync")
async def sync(body: SyncRequest, caller: CallerDep, state: StateDep) -> dict[str, Any]:
    """Return the caller's rooms and the messages created after the cursor."""
    return state.delta_for(caller, body.last_synced_at).model_dump(mode="json")


@router.post("/rooms/{room_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: str, body: SendMessageRequest, caller: CallerDep, state: StateDep
) -> dict[str, Any]:
    """Store message content exactly as sent."""
    room = _require_room(state, room_id)
    if caller not in room.members:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this room",
        )
    if body.content in (None, "", {}):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Content cannot be empty",
        )
    message = state.add_message(room_id, caller, body.content)
    return SendReceipt(message_id=message.message_id, status="sent").model_dump()


@router.get("/rooms/{room_id}/members")
async def list_members(room_id: str, caller: CallerDep, state: StateDep) -> list[dict[str, Any]]:
    """List room members with their published public keys."""
    _require_room(state, room_id)
    return [member.model_dump() for member in state.members_of(room_id)]


def create_relay_app(state: RelayState | None = None) -> FastAPI:
    """Build a relay app around `state` (a fresh one by default)."""
    app = FastAPI(
        title="Chatterbox Relay",
        description="Ciphertext-only message relay",
        version="1.0.0",
    )
    app.state.relay = state or RelayState()
    app.include_router(router)
    return app
