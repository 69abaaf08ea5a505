"""Tests for the identity key store and recipient key cache."""

from unittest.mock import AsyncMock

import pytest

from chatterbox_client.models.config_entry import IDENTITY_PRIVATE_KEY, IDENTITY_PUBLIC_KEY
from chatterbox_client.repositories.cache_repo import CacheRepository
from chatterbox_client.schemas.sync import RoomMember
from chatterbox_client.services.client import ChatClient
from chatterbox_client.services.crypto import CryptoCodec, InvalidPublicKeyError
from chatterbox_client.services.keystore import (
    KeyStore,
    MissingPublicKeyError,
    UnknownRecipientError,
)


@pytest.fixture
def mock_client():
    return AsyncMock(spec=ChatClient)


def test_no_identity_until_generated(session_factory) -> None:
    keystore = KeyStore(session_factory)

    assert keystore.load_private_key() is None
    assert keystore.private_key is None


def test_ensure_identity_generates_once(session_factory, mocker) -> None:
    generate = mocker.spy(CryptoCodec, "generate_identity_keypair")
    keystore = KeyStore(session_factory)

    first = keystore.ensure_identity()
    second = keystore.ensure_identity()

    assert first == second
    assert generate.call_count == 1
    with session_factory() as session:
        repo = CacheRepository(session)
        assert repo.get_config(IDENTITY_PUBLIC_KEY) == first
        assert repo.get_config(IDENTITY_PRIVATE_KEY)


def test_identity_survives_new_keystore_instance(session_factory) -> None:
    public_key = KeyStore(session_factory).ensure_identity()

    reopened = KeyStore(session_factory)

    assert reopened.public_key_b64 == public_key
    assert CryptoCodec.export_public_key(reopened.private_key) == public_key


@pytest.mark.asyncio
async def test_refresh_room_members_caches_keys(session_factory, mock_client, identity_keys) -> None:
    mock_client.fetch_members.return_value = [
        RoomMember(user_id="user-b", public_key=CryptoCodec.export_public_key(identity_keys["user-b"])),
    ]
    keystore = KeyStore(session_factory, mock_client)

    resolved = await keystore.refresh_room_members("room-1")

    assert set(resolved) == {"user-b"}
    mock_client.fetch_members.assert_awaited_once_with("room-1")
    assert keystore.cached_public_key("user-b").public_numbers() == (
        identity_keys["user-b"].public_key().public_numbers()
    )


@pytest.mark.asyncio
async def test_refresh_rejects_member_without_key(session_factory, mock_client, identity_keys) -> None:
    mock_client.fetch_members.return_value = [
        RoomMember(user_id="user-b", public_key=CryptoCodec.export_public_key(identity_keys["user-b"])),
        RoomMember(user_id="user-c", public_key=None),
    ]
    keystore = KeyStore(session_factory, mock_client)

    with pytest.raises(MissingPublicKeyError) as excinfo:
        await keystore.refresh_room_members("room-1")

    assert excinfo.value.user_ids == ("user-c",)
    assert keystore.cached_public_key("user-b") is not None
    assert keystore.cached_public_key("user-c") is None


@pytest.mark.asyncio
async def test_refresh_allows_listed_members_without_key(session_factory, mock_client) -> None:
    mock_client.fetch_members.return_value = [RoomMember(user_id="user-a", public_key=None)]
    keystore = KeyStore(session_factory, mock_client)

    assert await keystore.refresh_room_members("room-1", allow_missing=("user-a",)) == {}


@pytest.mark.asyncio
async def test_get_or_fetch_ignores_other_members_without_key(
    session_factory, mock_client, identity_keys
) -> None:
    mock_client.fetch_members.return_value = [
        RoomMember(user_id="user-b", public_key=CryptoCodec.export_public_key(identity_keys["user-b"])),
        RoomMember(user_id="user-c", public_key=None),
    ]
    keystore = KeyStore(session_factory, mock_client)

    key = await keystore.get_or_fetch_public_key("user-b", "room-1")

    assert key.public_numbers() == identity_keys["user-b"].public_key().public_numbers()
    with pytest.raises(UnknownRecipientError):
        await keystore.get_or_fetch_public_key("user-c", "room-1")


@pytest.mark.asyncio
async def test_refresh_rejects_invalid_member_key(session_factory, mock_client) -> None:
    mock_client.fetch_members.return_value = [RoomMember(user_id="user-b", public_key="nope")]
    keystore = KeyStore(session_factory, mock_client)

    with pytest.raises(InvalidPublicKeyError):
        await keystore.refresh_room_members("room-1")


@pytest.mark.asyncio
async def test_get_or_fetch_uses_cache(session_factory, mock_client, identity_keys) -> None:
    mock_client.fetch_members.return_value = [
        RoomMember(user_id="user-b", public_key=CryptoCodec.export_public_key(identity_keys["user-b"])),
    ]
    keystore = KeyStore(session_factory, mock_client)

    first = await keystore.get_or_fetch_public_key("user-b", "room-1")
    second = await keystore.get_or_fetch_public_key("user-b", "room-1")

    assert first is second
    assert mock_client.fetch_members.await_count == 1


@pytest.mark.asyncio
async def test_get_or_fetch_unknown_user(session_factory, mock_client) -> None:
    mock_client.fetch_members.return_value = []
    keystore = KeyStore(session_factory, mock_client)

    with pytest.raises(UnknownRecipientError):
        await keystore.get_or_fetch_public_key("user-z", "room-1")


@pytest.mark.asyncio
async def test_cache_entries_are_never_evicted(session_factory, mock_client, identity_keys) -> None:
    exported_b = CryptoCodec.export_public_key(identity_keys["user-b"])
    mock_client.fetch_members.side_effect = [
        [RoomMember(user_id="user-b", public_key=exported_b)],
        [],
    ]
    keystore = KeyStore(session_factory, mock_client)

    await keystore.refresh_room_members("room-1")
    await keystore.refresh_room_members("room-1")

    assert keystore.cached_public_key("user-b") is not None
