"""Tests for the message content union."""

import pytest
from pydantic import ValidationError

from chatterbox_client.schemas.content import (
    EncryptedEnvelope,
    PlaceholderReason,
    PlainContent,
    UndecryptableContent,
    display_text,
    parse_stored_content,
    parse_wire_content,
)


def test_untagged_text_is_plain() -> None:
    assert parse_wire_content({"text": "hi"}) == PlainContent(text="hi")


def test_bare_string_is_plain() -> None:
    assert parse_wire_content("hi") == PlainContent(text="hi")


def test_envelope_is_recognized() -> None:
    content = parse_wire_content({"type": "e2ee", "ciphertext": "c", "iv": "i", "keys": {"u": "k"}})
    assert isinstance(content, EncryptedEnvelope)
    assert content.keys == {"u": "k"}


@pytest.mark.parametrize(
    "raw",
    [
        None,
        42,
        {"weird": True},
        {"type": "e2ee", "ciphertext": "c"},
        {"type": "undecryptable", "reason": "decryption_failed", "text": "x"},
    ],
)
def test_unknown_wire_shapes_are_rejected(raw) -> None:
    with pytest.raises(ValidationError):
        parse_wire_content(raw)


def test_placeholder_round_trips_through_storage() -> None:
    placeholder = UndecryptableContent.for_reason(PlaceholderReason.DECRYPTION_FAILED)

    stored = parse_stored_content(placeholder.model_dump(mode="json"))

    assert stored == placeholder
    assert display_text(stored) == "🔒 Decryption Failed"


def test_display_text_never_shows_ciphertext() -> None:
    envelope = EncryptedEnvelope(ciphertext="c2VjcmV0", iv="aXY=", keys={})
    assert "c2VjcmV0" not in display_text(envelope)
