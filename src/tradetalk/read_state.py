"""Read-state reconciler: local unread reset plus a best-effort server report."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tradetalk.errors import APIError

if TYPE_CHECKING:
    from tradetalk.api import MarketplaceAPI
    from tradetalk.conversations import ConversationStore
    from tradetalk.models import UserId

logger = logging.getLogger(__name__)


class ReadStateReconciler:
    """Keep "conversation opened" and the unread counter in step.

    The local reset is authoritative and happens synchronously; the report to
    the backend is eventually consistent and never rolls the reset back.
    """

    def __init__(self, store: ConversationStore, api: MarketplaceAPI) -> None:
        self._store = store
        self._api = api

    def reset_local(self, counterpart_id: UserId) -> None:
        self._store.mark_read(counterpart_id)

    async def report(self, counterpart_id: UserId) -> bool:
        """Tell the backend the conversation was read; False if that failed."""
        try:
            await self._api.mark_read(counterpart_id)
        except APIError as exc:
            logger.warning(
                "Read report for %r failed; keeping local state: %s",
                counterpart_id,
                exc,
            )
            return False
        return True

    async def activate(self, counterpart_id: UserId) -> bool:
        """Reset locally, then report."""
        self.reset_local(counterpart_id)
        return await self.report(counterpart_id)
