"""End-to-end scenarios: two clients exchanging encrypted messages over the relay."""

import pytest

from chatterbox_client.schemas.content import PlaceholderReason
from chatterbox_client.services.crypto import CryptoCodec


@pytest.mark.asyncio
async def test_encrypted_message_reaches_members_only(make_stack, relay_state, identity_keys) -> None:
    relay_state.seed_room("R1", "general", ["user-a", "user-b"])
    alice = make_stack("user-a")
    bob = make_stack("user-b")

    sent = await alice.sender.send_text("R1", "hello")

    assert sent.ok
    assert sent.recipients == ("user-a", "user-b")
    # The relay only ever saw ciphertext
    [stored] = relay_state.messages
    assert stored.content["type"] == "e2ee"
    assert "hello" not in str(stored.content)

    # Read-after-write: the sender sees their own message after the follow-up sync
    assert [m.content["text"] for m in alice.engine.list_messages("R1")] == ["hello"]

    result = await bob.engine.sync_once()
    assert result.ok
    [received] = bob.engine.list_messages("R1")
    assert received.content == {"type": "plain", "text": "hello"}
    assert received.sender_id == "user-a"

    # A third user who somehow obtains the envelope cannot read it
    relay_state.seed_room("R1", "general", ["user-c"])
    carol = make_stack("user-c")
    await carol.engine.sync_once()
    [intercepted] = carol.engine.list_messages("R1")
    assert intercepted.content["reason"] == PlaceholderReason.NOT_ADDRESSED_TO_ME.value

    for stack in (alice, bob, carol):
        await stack.close()


@pytest.mark.asyncio
async def test_first_sync_snapshot_then_incremental(make_stack, relay_state, relay_clock) -> None:
    relay_state.seed_room("R1", "general", ["user-a", "user-b"])
    relay_state.seed_room("R2", "random", ["user-b"])
    relay_state.add_message("R1", "user-a", {"text": "before"})
    bob = make_stack("user-b")

    first = await bob.engine.sync_once()

    assert first.applied.rooms == 2
    assert first.applied.messages == 1
    cursor = bob.engine.current_cursor()
    assert cursor is not None

    relay_clock.advance(5)
    relay_state.seed_room("R3", "new-room", ["user-b"])
    relay_state.add_message("R3", "user-a", {"text": "after"})

    second = await bob.engine.sync_once()

    assert second.applied.messages == 1
    assert bob.engine.current_cursor() > cursor
    assert {room.room_id for room in bob.engine.list_rooms()} == {"R1", "R2", "R3"}
    assert [m.content["text"] for m in bob.engine.list_messages("R1")] == ["before"]
    assert [m.content["text"] for m in bob.engine.list_messages("R3")] == ["after"]

    await bob.close()


@pytest.mark.asyncio
async def test_replayed_pull_does_not_duplicate(make_stack, relay_state, identity_keys) -> None:
    relay_state.seed_room("R1", "general", ["user-a", "user-b"])
    envelope = CryptoCodec.encrypt_envelope(
        "replayed", {"user-b": identity_keys["user-b"].public_key()}
    )
    relay_state.add_message("R1", "user-a", envelope.model_dump())
    bob = make_stack("user-b")

    delta = await bob.client.pull(None)
    bob.engine.apply(delta)
    bob.engine.apply(delta)

    messages = bob.engine.list_messages("R1")
    assert [m.content["text"] for m in messages] == ["replayed"]

    await bob.close()


@pytest.mark.asyncio
async def test_send_to_room_without_membership_fails(make_stack, relay_state) -> None:
    relay_state.seed_room("R1", "general", ["user-b"])
    alice = make_stack("user-a")
    make_stack("user-b")

    result = await alice.sender.send_text("R1", "let me in")

    assert result.ok is False
    assert relay_state.messages == []
    assert alice.engine.list_messages("R1") == []

    await alice.close()


@pytest.mark.asyncio
async def test_member_without_published_key_blocks_send(make_stack, relay_state) -> None:
    relay_state.seed_room("R1", "general", ["user-a", "user-b", "user-d"])
    relay_state.register("user-d", display_name="user-d")
    alice = make_stack("user-a")
    make_stack("user-b")

    result = await alice.sender.send_text("R1", "hello")

    assert result.ok is False
    assert "user-d" in result.error
    assert relay_state.messages == []

    await alice.close()
