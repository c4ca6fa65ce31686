"""Conversation store: recency-ordered summaries keyed by counterpart.

Unread counters follow two rules:
- incremented only for a message received by the local user while its
  conversation is not the active one;
- reset only by an explicit mark-read on that conversation.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from tradetalk.models import Conversation, fallback_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tradetalk.models import ItemLookup, Message, UserId

_PREVIEW_LIMIT = 120


def _preview(content: str) -> str:
    text = " ".join(content.split())
    if len(text) <= _PREVIEW_LIMIT:
        return text
    return text[: _PREVIEW_LIMIT - 1] + "…"


def _recency_key(conv: Conversation) -> tuple[bool, float]:
    if conv.last_message_at is None:
        return (True, 0.0)
    return (False, -conv.last_message_at.timestamp())


class ConversationStore:
    """Ordered collection of conversation summaries, most recent first."""

    def __init__(self, local_user_id: UserId) -> None:
        self.local_user_id = local_user_id
        self._order: list[UserId] = []
        self._entries: dict[UserId, Conversation] = {}
        self._items: dict[UserId, ItemLookup] = {}

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, counterpart_id: object) -> bool:
        return counterpart_id in self._entries

    def list(self) -> tuple[Conversation, ...]:
        """Return conversations ordered by most recent activity first."""
        return tuple(self._entries[cid] for cid in self._order)

    def get(self, counterpart_id: UserId) -> Conversation | None:
        return self._entries.get(counterpart_id)

    def total_unread(self) -> int:
        return sum(c.unread_count for c in self._entries.values())

    def replace_all(self, conversations: Iterable[Conversation]) -> None:
        """Replace every entry with a REST snapshot.

        The snapshot is ordered by ``last_message_at`` (newest first, entries
        without a timestamp last); ties keep the server's order. Item metadata
        survives the refresh.
        """
        incoming: dict[UserId, Conversation] = {}
        for conv in conversations:
            incoming[conv.counterpart_id] = conv
        ranked = sorted(incoming.values(), key=_recency_key)
        self._entries = {c.counterpart_id: c for c in ranked}
        self._order = [c.counterpart_id for c in ranked]

    def clear(self) -> None:
        self._order.clear()
        self._entries.clear()
        self._items.clear()

    def _put_front(self, conv: Conversation) -> None:
        cid = conv.counterpart_id
        if cid in self._entries:
            self._order.remove(cid)
        self._order.insert(0, cid)
        self._entries[cid] = conv

    def upsert_from_incoming(
        self, message: Message, *, active_id: UserId | None
    ) -> Conversation:
        """Fold an inbound or outbound message into its conversation summary.

        Raises:
            InternalError: If the message involves neither party.
        """
        cid = message.counterpart_of(self.local_user_id)
        current = self._entries.get(cid)
        if current is None:
            name = message.sender_name if message.sender_id == cid else None
            current = Conversation(
                counterpart_id=cid,
                counterpart_name=name or fallback_name(cid),
            )

        unread = current.unread_count
        if cid != active_id and message.is_received_by(self.local_user_id):
            unread += 1

        updated = replace(
            current,
            last_message_preview=_preview(message.content),
            last_message_at=message.created_at or current.last_message_at,
            unread_count=unread,
        )
        self._put_front(updated)
        return updated

    def upsert_from_push(self, summary: Conversation) -> Conversation:
        """Replace or create an entry from a server-declared summary."""
        self._put_front(summary)
        return summary

    def ensure_placeholder(
        self, counterpart_id: UserId, name: str | None
    ) -> Conversation:
        """Insert a zero-message entry unless one exists; return the entry.

        An existing conversation keeps its identity and name.
        """
        existing = self._entries.get(counterpart_id)
        if existing is not None:
            return existing
        placeholder = Conversation(
            counterpart_id=counterpart_id,
            counterpart_name=name or fallback_name(counterpart_id),
        )
        self._put_front(placeholder)
        return placeholder

    def rename(self, counterpart_id: UserId, name: str) -> None:
        current = self._entries.get(counterpart_id)
        if current is None or not name or current.counterpart_name == name:
            return
        self._entries[counterpart_id] = replace(current, counterpart_name=name)

    def mark_read(self, counterpart_id: UserId) -> None:
        current = self._entries.get(counterpart_id)
        if current is None or current.unread_count == 0:
            return
        self._entries[counterpart_id] = replace(current, unread_count=0)

    def attach_item(self, counterpart_id: UserId, item: ItemLookup) -> None:
        """Remember the item context for a counterpart."""
        self._items[counterpart_id] = item

    def item_for(self, counterpart_id: UserId) -> ItemLookup | None:
        return self._items.get(counterpart_id)
