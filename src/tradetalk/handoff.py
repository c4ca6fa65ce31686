"""Cross-page "start a chat" handoff: persisted slot plus a one-shot bridge.

Other parts of the application stage a record with ``stage_handoff``; the
engine consumes it at most once per activation. Consumption deletes the
record before any network work begins.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from tradetalk.models import ItemSnapshot, PendingHandoff, coerce_id

if TYPE_CHECKING:
    import os

    from tradetalk.conversations import ConversationStore
    from tradetalk.items import ItemSnapshotCache
    from tradetalk.models import Conversation, UserId

logger = logging.getLogger(__name__)

HANDOFF_KEY = "yy_pending_chat"


class HandoffSlot(Protocol):
    """Single-slot key-value storage for a pending handoff record."""

    def read(self) -> str | None:
        """Return the raw record, or None when the slot is empty."""
        ...

    def write(self, raw: str) -> None:
        """Store *raw*, replacing any previous record."""
        ...

    def delete(self) -> None:
        """Empty the slot; a no-op when already empty."""
        ...


class MemoryHandoffSlot:
    """In-process slot, used when no durable path is configured."""

    def __init__(self, raw: str | None = None) -> None:
        self._raw = raw

    def read(self) -> str | None:
        return self._raw

    def write(self, raw: str) -> None:
        self._raw = raw

    def delete(self) -> None:
        self._raw = None


class JSONFileHandoffSlot:
    """Durable slot backed by one JSON file holding ``{key: record}``.

    Writes go to a temp file that is renamed into place, so readers never
    observe a half-written record.
    """

    def __init__(self, path: str | os.PathLike[str], *, key: str = HANDOFF_KEY) -> None:
        self._path = Path(path)
        self._key = key

    def read(self) -> str | None:
        value = self._read_all().get(self._key)
        return value if isinstance(value, str) else None

    def write(self, raw: str) -> None:
        data = self._read_all()
        data[self._key] = raw
        self._write_all(data)

    def delete(self) -> None:
        data = self._read_all()
        if self._key not in data:
            return
        del data[self._key]
        self._write_all(data)

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            result = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable handoff file %s: %s", self._path, exc)
            return {}
        return result if isinstance(result, dict) else {}

    def _write_all(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self._path)


def stage_handoff(
    slot: HandoffSlot,
    counterpart_id: UserId,
    *,
    counterpart_name: str | None = None,
    item: ItemSnapshot | None = None,
) -> None:
    """Write a pending "open this conversation" record into *slot*."""
    record: dict[str, Any] = {"counterpartId": counterpart_id}
    if counterpart_name:
        record["counterpartName"] = counterpart_name
    if item is not None:
        record["item"] = {
            "id": item.id,
            "kind": item.kind,
            "title": item.title,
            "price": item.price,
            "imageUrl": item.image_url,
            "ownerId": item.owner_id,
            "ownerName": item.owner_name,
            "status": item.status,
        }
    slot.write(json.dumps(record))


def parse_handoff(raw: str) -> PendingHandoff | None:
    """Decode a stored record into a ``PendingHandoff``.

    Accepts ``{counterpartId, counterpartName, item}`` as well as the
    listing-page shape ``{userId, username, listing}``. When no counterpart id
    is present the item owner is used. Returns None for undecodable records.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Discarding undecodable handoff record: %s", exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Discarding handoff record of type %s", type(data).__name__)
        return None

    item: ItemSnapshot | None = None
    item_raw = data.get("item", data.get("listing"))
    if isinstance(item_raw, dict):
        try:
            item = ItemSnapshot.from_payload(item_raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring handoff item context: %s", exc)

    raw_id = data.get("counterpartId", data.get("userId"))
    if raw_id is None and item is not None:
        raw_id = item.owner_id
    try:
        counterpart_id = coerce_id(raw_id)
    except TypeError:
        logger.warning("Discarding handoff record without a usable counterpart")
        return None

    name = data.get("counterpartName", data.get("username"))
    if not isinstance(name, str) or not name.strip():
        name = item.owner_name if item is not None else None
    return PendingHandoff(counterpart_id=counterpart_id, counterpart_name=name, item=item)


class HandoffBridge:
    """Consume the pending handoff once and prepare its conversation."""

    def __init__(
        self,
        slot: HandoffSlot,
        store: ConversationStore,
        items: ItemSnapshotCache,
    ) -> None:
        self._slot = slot
        self._store = store
        self._items = items
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume_pending(self) -> PendingHandoff | None:
        """Take the pending record, deleting it before anything else happens.

        Only the first call in a bridge's lifetime can return a record.
        """
        if self._consumed:
            return None
        self._consumed = True
        raw = self._slot.read()
        self._slot.delete()
        if raw is None:
            return None
        return parse_handoff(raw)

    def prepare(self, handoff: PendingHandoff) -> Conversation:
        """Ensure a conversation entry exists and seed its item context.

        An existing conversation keeps its identity and name; otherwise a
        placeholder is created from the locally known fields.
        """
        conv = self._store.ensure_placeholder(
            handoff.counterpart_id, handoff.counterpart_name
        )
        if handoff.item is not None:
            item = self._items.seed(handoff.item)
            self._store.attach_item(conv.counterpart_id, item)
        return conv
