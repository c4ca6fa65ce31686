"""Wire models for REST payloads and push-channel frames.

Inbound push frames form a discriminated union on ``kind``. Unknown kinds are
ignored so older clients keep working when the server adds frame types.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from tradetalk.errors import EnvelopeError
from tradetalk.models import (
    Conversation,
    Counterpart,
    History,
    Message,
    coerce_id,
    fallback_name,
    parse_timestamp,
)


def _valid_id(value: int | str) -> int | str:
    try:
        return coerce_id(value)
    except TypeError as e:
        raise ValueError(str(e)) from e


WireId = Annotated[
    int | str, Field(union_mode="left_to_right"), AfterValidator(_valid_id)
]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class MessagePayload(_WireModel):
    id: WireId | None = None
    sender_id: WireId
    receiver_id: WireId
    content: str
    created_at: datetime | str | None = None
    item_id: WireId | None = None
    sender_name: str | None = None

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            sender_id=coerce_id(self.sender_id),
            receiver_id=coerce_id(self.receiver_id),
            content=self.content,
            created_at=parse_timestamp(self.created_at),
            item_id=coerce_id(self.item_id) if self.item_id is not None else None,
            sender_name=self.sender_name,
        )


class ConversationPayload(_WireModel):
    counterpart_id: WireId
    counterpart_name: str | None = None
    last_message_preview: str | None = None
    last_message_at: datetime | str | None = None
    unread_count: int = Field(default=0, ge=0)

    def to_conversation(self) -> Conversation:
        counterpart_id = coerce_id(self.counterpart_id)
        return Conversation(
            counterpart_id=counterpart_id,
            counterpart_name=self.counterpart_name or fallback_name(counterpart_id),
            last_message_preview=self.last_message_preview or "",
            last_message_at=parse_timestamp(self.last_message_at),
            unread_count=self.unread_count,
        )


class CounterpartPayload(_WireModel):
    id: WireId
    name: str | None = None


class HistoryPayload(_WireModel):
    messages: list[MessagePayload] = Field(default_factory=list)
    counterpart: CounterpartPayload

    def to_history(self) -> History:
        counterpart_id = coerce_id(self.counterpart.id)
        return History(
            counterpart=Counterpart(
                id=counterpart_id,
                name=self.counterpart.name or fallback_name(counterpart_id),
            ),
            messages=tuple(m.to_message() for m in self.messages),
        )


# --- Push frames -----------------------------------------------------------


class MessageFrame(_WireModel):
    kind: Literal["message"]
    data: MessagePayload


class SummaryFrame(_WireModel):
    kind: Literal["conversation-summary-update"]
    data: ConversationPayload


class ErrorFrame(_WireModel):
    kind: Literal["error"]
    message: str = ""


InboundFrame = Annotated[
    MessageFrame | SummaryFrame | ErrorFrame,
    Field(discriminator="kind"),
]

_INBOUND_ADAPTER: TypeAdapter[MessageFrame | SummaryFrame | ErrorFrame] = TypeAdapter(
    InboundFrame
)
KNOWN_KINDS: frozenset[str] = frozenset(
    {"message", "conversation-summary-update", "error"}
)


class OutboundMessageFrame(_WireModel):
    """Client-to-server chat message."""

    kind: Literal["message"] = "message"
    to_user_id: WireId
    content: str
    item_id: WireId | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def parse_frame(
    raw: str | bytes | dict[str, Any],
) -> MessageFrame | SummaryFrame | ErrorFrame | None:
    """Parse one inbound push frame.

    Returns:
        The typed frame, or ``None`` when the frame kind is not known.

    Raises:
        EnvelopeError: If the frame is not valid JSON or fails validation.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise EnvelopeError(f"Push frame is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise EnvelopeError(
            f"Push frame must be a JSON object, got {type(data).__name__}"
        )
    kind = data.get("kind")
    if not isinstance(kind, str):
        raise EnvelopeError("Push frame has no 'kind' field")
    if kind not in KNOWN_KINDS:
        return None

    try:
        return _INBOUND_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise EnvelopeError(
            f"Malformed {kind!r} frame: {e.error_count()} validation error(s)",
            hint=str(e),
        ) from e
