"""Inline, non-blocking notices for recoverable engine failures.

Collaborator errors are converted into notices at the point of use; the
presentation layer drains them and decides how to show them.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

    from tradetalk.models import UserId

logger = logging.getLogger(__name__)

NoticeKind = Literal[
    "conversations_unavailable",
    "history_unavailable",
    "channel_unavailable",
    "order_failed",
]


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    message: str
    counterpart_id: UserId | None = None
    hint: str | None = None


class NoticeBoard:
    """Collects notices and forwards each one to an optional listener."""

    def __init__(self, listener: Callable[[Notice], None] | None = None) -> None:
        self._pending: list[Notice] = []
        self._listener = listener

    def post(self, notice: Notice) -> None:
        logger.info("Notice %s: %s", notice.kind, notice.message)
        self._pending.append(notice)
        if self._listener is not None:
            self._listener(notice)

    def pending(self) -> tuple[Notice, ...]:
        return tuple(self._pending)

    def drain(self) -> list[Notice]:
        """Return and forget all pending notices."""
        drained, self._pending = self._pending, []
        return drained

    def dismiss(self, kind: NoticeKind) -> None:
        self._pending = [n for n in self._pending if n.kind != kind]
