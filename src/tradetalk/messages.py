"""Message log for the active conversation and the active-selection pointer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tradetalk.errors import APIError
from tradetalk.notices import Notice

if TYPE_CHECKING:
    from tradetalk.api import MarketplaceAPI
    from tradetalk.models import History, Message, UserId
    from tradetalk.notices import NoticeBoard
    from tradetalk.read_state import ReadStateReconciler

logger = logging.getLogger(__name__)


class ActiveSelection:
    """Single pointer to the currently open conversation, or none."""

    def __init__(self) -> None:
        self._current: UserId | None = None

    @property
    def current(self) -> UserId | None:
        return self._current

    def set(self, counterpart_id: UserId) -> None:
        self._current = counterpart_id

    def clear(self) -> None:
        self._current = None

    def is_active(self, counterpart_id: UserId) -> bool:
        return self._current is not None and self._current == counterpart_id


class MessageLog:
    """Ordered history of the active conversation only.

    Messages keep arrival order; nothing is re-sorted by timestamp. Logs for
    inactive conversations are never materialized.
    """

    def __init__(
        self,
        api: MarketplaceAPI,
        selection: ActiveSelection,
        reconciler: ReadStateReconciler,
        notices: NoticeBoard,
        *,
        local_user_id: UserId,
    ) -> None:
        self._api = api
        self._selection = selection
        self._reconciler = reconciler
        self._notices = notices
        self._local_user_id = local_user_id
        self._owner: UserId | None = None
        self._messages: list[Message] = []

    @property
    def counterpart_id(self) -> UserId | None:
        """Conversation the current contents belong to."""
        return self._owner

    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def reset(self, counterpart_id: UserId | None) -> None:
        """Empty the log and bind it to *counterpart_id*."""
        self._owner = counterpart_id
        self._messages = []

    async def load(self, counterpart_id: UserId) -> History | None:
        """Mark *counterpart_id* read, then fetch its full history.

        The unread counter is reset before anything is awaited, and the read
        is reported whatever the history outcome. A response that arrives
        after the selection moved elsewhere is discarded.

        Returns:
            The applied history, or ``None`` when the fetch failed or the
            response was stale.
        """
        if self._owner != counterpart_id:
            self.reset(counterpart_id)
        await self._reconciler.activate(counterpart_id)

        try:
            history = await self._api.fetch_history(counterpart_id)
        except APIError as exc:
            if self._selection.is_active(counterpart_id):
                self._notices.post(
                    Notice(
                        kind="history_unavailable",
                        message=f"Could not load messages: {exc}",
                        counterpart_id=counterpart_id,
                        hint=exc.hint,
                    )
                )
            else:
                logger.debug("Dropping failed history load for %r", counterpart_id)
            return None

        if not self._selection.is_active(counterpart_id):
            logger.debug(
                "Discarding stale history for %r (active: %r)",
                counterpart_id,
                self._selection.current,
            )
            return None

        self._owner = counterpart_id
        self._messages = list(history.messages)
        return history

    def append(self, message: Message) -> bool:
        """Append *message* if it belongs to the active conversation.

        Returns:
            True when the message was appended.
        """
        counterpart = message.counterpart_of(self._local_user_id)
        if not self._selection.is_active(counterpart):
            return False
        if self._owner != counterpart:
            self.reset(counterpart)
        self._messages.append(message)
        return True
