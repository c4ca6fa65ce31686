"""Wire contract tests for push frames and REST payloads."""

from __future__ import annotations

import json

import pytest

from tradetalk.errors import EnvelopeError
from tradetalk.protocol import (
    ErrorFrame,
    HistoryPayload,
    MessageFrame,
    OutboundMessageFrame,
    SummaryFrame,
    parse_frame,
)
from tests.helpers import message_frame, summary_frame

pytestmark = pytest.mark.contract


def test_message_frame_parses_into_domain_message() -> None:
    frame = parse_frame(
        message_frame(7, 1, "Still for sale?", msg_id=11, item_id="9", minutes=5)
    )

    assert isinstance(frame, MessageFrame)
    msg = frame.data.to_message()
    assert msg.id == 11
    assert (msg.sender_id, msg.receiver_id) == (7, 1)
    assert msg.item_id == 9
    assert msg.created_at is not None


def test_summary_frame_parses_into_conversation() -> None:
    frame = parse_frame(summary_frame("5", "Ana", preview="ok", unread=2, minutes=1))

    assert isinstance(frame, SummaryFrame)
    conv = frame.data.to_conversation()
    assert conv.counterpart_id == 5
    assert conv.counterpart_name == "Ana"
    assert conv.unread_count == 2


def test_error_frame_parses() -> None:
    frame = parse_frame(json.dumps({"kind": "error", "message": "rate limited"}))

    assert isinstance(frame, ErrorFrame)
    assert frame.message == "rate limited"


def test_unknown_kind_is_ignored() -> None:
    assert parse_frame(json.dumps({"kind": "typing", "data": {}})) is None


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps([1, 2]),
        json.dumps({"data": {}}),
        json.dumps({"kind": "message", "data": {"content": "no parties"}}),
        json.dumps(
            {
                "kind": "conversation-summary-update",
                "data": {"counterpartId": 1, "unreadCount": -3},
            }
        ),
    ],
)
def test_malformed_frames_raise_envelope_error(raw: str) -> None:
    with pytest.raises(EnvelopeError):
        parse_frame(raw)


def test_validation_failures_carry_detail_in_hint() -> None:
    with pytest.raises(EnvelopeError) as exc:
        parse_frame(json.dumps({"kind": "message", "data": {}}))
    assert exc.value.hint is not None
    assert "senderId" in exc.value.hint or "sender_id" in exc.value.hint


def test_outbound_frame_uses_camel_case_and_omits_empty_item() -> None:
    payload = json.loads(OutboundMessageFrame(to_user_id=42, content="hi").to_json())

    assert payload == {"kind": "message", "toUserId": 42, "content": "hi"}

    with_item = json.loads(
        OutboundMessageFrame(to_user_id=42, content="hi", item_id=9).to_json()
    )
    assert with_item["itemId"] == 9


def test_history_payload_falls_back_to_placeholder_name() -> None:
    history = HistoryPayload.model_validate(
        {"messages": [], "counterpart": {"id": 42}}
    ).to_history()

    assert history.counterpart.name == "user 42"
    assert history.messages == ()


@pytest.mark.parametrize(
    "raw",
    [
        message_frame(" ", 1),
        message_frame(7, ""),
        summary_frame("  ", "Ana"),
    ],
)
def test_blank_identifiers_are_envelope_errors(raw: str) -> None:
    with pytest.raises(EnvelopeError):
        parse_frame(raw)
