"""tradetalk: conversation synchronization engine for marketplace chat.

Public API:
    - ChatEngine: orchestrates conversations, history, push and handoffs
    - Config: configuration dataclass
    - stage_handoff(): record a "start a chat" intent for the next activation
"""

from __future__ import annotations

import logging

from tradetalk.channel import ChannelState
from tradetalk.config import Config
from tradetalk.engine import ChatEngine
from tradetalk.errors import (
    ActionUnavailableError,
    APIError,
    ChannelNotReadyError,
    ConfigurationError,
    EnvelopeError,
    InternalError,
    TradetalkError,
)
from tradetalk.handoff import JSONFileHandoffSlot, MemoryHandoffSlot, stage_handoff
from tradetalk.models import (
    Conversation,
    ItemSnapshot,
    Message,
    PendingHandoff,
    UnavailableItem,
)
from tradetalk.notices import Notice
from tradetalk.retry import RetryPolicy

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("tradetalk")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("tradetalk").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "ActionUnavailableError",
    "ChannelNotReadyError",
    "ChannelState",
    "ChatEngine",
    "Config",
    "ConfigurationError",
    "Conversation",
    "EnvelopeError",
    "InternalError",
    "ItemSnapshot",
    "JSONFileHandoffSlot",
    "MemoryHandoffSlot",
    "Message",
    "Notice",
    "PendingHandoff",
    "RetryPolicy",
    "TradetalkError",
    "UnavailableItem",
    "stage_handoff",
]
