"""Test helpers (small builders for wire frames and domain objects).

Keep this file tiny: it exists so test modules do not each grow their own
ad-hoc JSON literals for push frames.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import json
from typing import Any

from tradetalk.models import Conversation, Counterpart, History, ItemSnapshot, Message

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def at(minutes: int) -> datetime:
    """Timestamp *minutes* after ``BASE_TIME``."""
    return BASE_TIME + timedelta(minutes=minutes)


def message_frame(
    sender: Any,
    receiver: Any,
    content: str = "hello",
    *,
    msg_id: Any = None,
    item_id: Any = None,
    sender_name: str | None = None,
    minutes: int | None = None,
) -> str:
    data: dict[str, Any] = {
        "senderId": sender,
        "receiverId": receiver,
        "content": content,
    }
    if msg_id is not None:
        data["id"] = msg_id
    if item_id is not None:
        data["itemId"] = item_id
    if sender_name is not None:
        data["senderName"] = sender_name
    if minutes is not None:
        data["createdAt"] = at(minutes).isoformat()
    return json.dumps({"kind": "message", "data": data})


def summary_frame(
    counterpart: Any,
    name: str,
    *,
    preview: str = "",
    unread: int = 0,
    minutes: int | None = None,
) -> str:
    data: dict[str, Any] = {
        "counterpartId": counterpart,
        "counterpartName": name,
        "lastMessagePreview": preview,
        "unreadCount": unread,
    }
    if minutes is not None:
        data["lastMessageAt"] = at(minutes).isoformat()
    return json.dumps({"kind": "conversation-summary-update", "data": data})


def conversation(
    counterpart: Any,
    name: str | None = None,
    *,
    unread: int = 0,
    minutes: int | None = None,
    preview: str = "",
) -> Conversation:
    return Conversation(
        counterpart_id=counterpart,
        counterpart_name=name or f"user {counterpart}",
        last_message_preview=preview,
        last_message_at=at(minutes) if minutes is not None else None,
        unread_count=unread,
    )


def history(counterpart: Any, name: str, *messages: Message) -> History:
    return History(counterpart=Counterpart(id=counterpart, name=name), messages=messages)


def message(
    sender: Any, receiver: Any, content: str = "hi", *, item_id: Any = None
) -> Message:
    return Message(
        sender_id=sender, receiver_id=receiver, content=content, item_id=item_id
    )


def sale_item(item_id: Any = 9, *, owner: Any = 42, status: str | None = None) -> ItemSnapshot:
    return ItemSnapshot(
        id=item_id,
        kind="sale",
        title="Desk lamp",
        price=12.5,
        owner_id=owner,
        owner_name="Bo",
        status=status,
    )
