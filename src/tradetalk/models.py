"""Domain models for conversations, messages, items and handoffs.

These are the engine's in-memory state types. Wire shapes live in
``tradetalk.protocol`` and are converted into these at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from tradetalk.errors import InternalError

UserId = int | str
ItemId = int | str

ItemKind = Literal["sale", "acquire", "help", "lostfound"]
QuickAction = Literal["buy_now", "offer_to_sell"]

_LOSTFOUND_ALIASES = frozenset({"lost", "found", "lostfound"})


def coerce_id(value: Any) -> int | str:
    """Normalize an identifier so ids from storage, REST and push compare equal.

    Integers and digit-only strings become ``int``; other strings are stripped.
    """
    if isinstance(value, bool):
        raise TypeError("identifier must not be a bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
        if text:
            return text
    raise TypeError(f"invalid identifier: {value!r}")


def normalize_kind(raw: Any) -> ItemKind:
    """Map a raw listing type onto the four item kinds."""
    if not isinstance(raw, str):
        return "sale"
    text = raw.strip().lower()
    if text in _LOSTFOUND_ALIASES:
        return "lostfound"
    if text in ("help", "acquire", "sale"):
        return text  # type: ignore[return-value]
    return "sale"


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime (naive means UTC)."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            value = datetime.fromisoformat(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def fallback_name(counterpart_id: UserId) -> str:
    return f"user {counterpart_id}"


@dataclass(frozen=True)
class Counterpart:
    """The other party of a conversation as reported by the history endpoint."""

    id: UserId
    name: str


@dataclass(frozen=True)
class Message:
    """A single chat message.

    ``id`` stays ``None`` until the source of truth confirms the message.
    """

    sender_id: UserId
    receiver_id: UserId
    content: str
    id: int | str | None = None
    created_at: datetime | None = None
    item_id: ItemId | None = None
    sender_name: str | None = None

    def counterpart_of(self, local_user_id: UserId) -> UserId:
        """Return the party that is not the local user.

        Raises:
            InternalError: If the local user is neither sender nor receiver.
        """
        if self.sender_id == local_user_id:
            return self.receiver_id
        if self.receiver_id == local_user_id:
            return self.sender_id
        raise InternalError(
            f"Message {self.id!r} involves neither party {local_user_id!r}",
            hint="Push frames must only carry messages addressed to or sent by the local user.",
        )

    def is_received_by(self, local_user_id: UserId) -> bool:
        return self.receiver_id == local_user_id and self.sender_id != local_user_id


@dataclass(frozen=True)
class Conversation:
    """Summary of a one-to-one conversation, keyed by counterpart."""

    counterpart_id: UserId
    counterpart_name: str
    last_message_preview: str = ""
    last_message_at: datetime | None = None
    unread_count: int = 0

    def __post_init__(self) -> None:
        if self.unread_count < 0:
            raise InternalError(
                f"unread_count must be >= 0, got {self.unread_count}",
            )


@dataclass(frozen=True)
class ItemSnapshot:
    """Denormalized, immutable summary of a marketplace item."""

    id: ItemId
    kind: ItemKind
    title: str
    price: float | None = None
    image_url: str | None = None
    owner_id: UserId | None = None
    owner_name: str | None = None
    status: str | None = None

    @property
    def available(self) -> bool:
        """True unless the listing reports a status other than ``available``."""
        return self.status in (None, "available")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ItemSnapshot:
        """Build a snapshot from a listing payload.

        Accepts the ``{"listing": {...}}`` wrapper and both snake_case and
        camelCase field spellings.

        Raises:
            ValueError: If the payload carries no usable item id.
        """
        listing = data.get("listing")
        if isinstance(listing, dict):
            data = listing

        raw_id = _first(data, "id", "itemId", "listingId")
        if raw_id is None:
            raise ValueError("item payload has no id")
        owner = _first(data, "ownerId", "owner_id", "user_id", "userId")
        price_raw = data.get("price")
        try:
            price = float(price_raw) if price_raw not in (None, "") else None
        except (TypeError, ValueError):
            price = None
        title = data.get("title")
        return cls(
            id=coerce_id(raw_id),
            kind=normalize_kind(_first(data, "kind", "type", "listingType")),
            title=str(title) if title is not None else "",
            price=price,
            image_url=_first(data, "imageUrl", "image_url"),
            owner_id=coerce_id(owner) if owner is not None else None,
            owner_name=_first(data, "ownerName", "owner_name", "user_name"),
            status=data.get("status"),
        )


@dataclass(frozen=True)
class UnavailableItem:
    """Negative cache entry: the item could not be fetched this session."""

    id: ItemId
    reason: str = ""

    @property
    def available(self) -> bool:
        return False


ItemLookup = ItemSnapshot | UnavailableItem


@dataclass(frozen=True)
class PendingHandoff:
    """A one-shot "open this conversation" intent written by another page."""

    counterpart_id: UserId
    counterpart_name: str | None = None
    item: ItemSnapshot | None = None


@dataclass(frozen=True)
class History:
    """Full message history of one conversation."""

    counterpart: Counterpart
    messages: tuple[Message, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OrderConfirmation:
    order_id: int | str | None
    message: str = ""


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None
