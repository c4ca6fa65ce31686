"""Observability sink for events that do not change engine state.

Server ``error`` frames and dropped envelopes are reported here. The default
sink writes to the ``tradetalk`` logger; applications may plug in their own.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

log = logging.getLogger(__name__)

SERVER_ERROR = "push.server_error"
ENVELOPE_DROPPED = "push.envelope_dropped"


@runtime_checkable
class EventSink(Protocol):
    """Duck-typed protocol for observability sinks."""

    def record_event(self, name: str, **fields: Any) -> None: ...  # noqa: D102


class LoggingSink:
    """Write every event to the standard logger at WARNING."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or log

    def record_event(self, name: str, **fields: Any) -> None:
        detail = " ".join(f"{k}={v!r}" for k, v in sorted(fields.items()))
        self._logger.warning("%s %s", name, detail)


class RecordingSink:
    """Keep events in memory; handy for embedding apps and tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record_event(self, name: str, **fields: Any) -> None:
        self.events.append((name, dict(fields)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
