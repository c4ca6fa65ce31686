"""Item snapshot cache with single-flight fetches and negative caching."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tradetalk._singleflight import SingleFlight
from tradetalk.errors import APIError
from tradetalk.models import ItemSnapshot, UnavailableItem

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tradetalk.models import ItemId, ItemLookup, QuickAction, UserId

logger = logging.getLogger(__name__)


class ItemSnapshotCache:
    """Memoized ``item id -> snapshot`` lookup for one engine lifetime.

    Entries are immutable once cached. A failed fetch stores an
    ``UnavailableItem`` so the same id is not retried this session, and
    concurrent lookups for one id share a single fetch.
    """

    def __init__(self, fetch: Callable[[ItemId], Awaitable[ItemSnapshot]]) -> None:
        self._fetch = fetch
        self._flight: SingleFlight[ItemId, ItemLookup] = SingleFlight()

    def peek(self, item_id: ItemId) -> ItemLookup | None:
        return self._flight.peek(item_id)

    def seed(self, snapshot: ItemSnapshot) -> ItemLookup:
        """Cache a locally known snapshot; an existing entry wins."""
        self._flight.seed(snapshot.id, snapshot)
        cached = self._flight.peek(snapshot.id)
        return cached if cached is not None else snapshot

    def clear(self) -> None:
        self._flight.clear()

    async def resolve(self, item_id: ItemId) -> ItemLookup:
        """Return the snapshot for *item_id*, fetching it at most once."""

        async def _work() -> ItemLookup:
            try:
                return await self._fetch(item_id)
            except APIError as exc:
                logger.warning("Item %r unavailable: %s", item_id, exc)
                return UnavailableItem(id=item_id, reason=str(exc))

        return await self._flight.run(item_id, _work)


def quick_action_for(
    item: ItemLookup | None, local_user_id: UserId
) -> QuickAction | None:
    """Decide which quick-action affordance an item context offers.

    - ``buy_now``: a sale listing that is still available (or whose status is
      unknown) and not owned by the local user.
    - ``offer_to_sell``: an acquire listing not owned by the local user.
    """
    if not isinstance(item, ItemSnapshot):
        return None
    if item.owner_id is not None and item.owner_id == local_user_id:
        return None
    if item.kind == "sale" and item.available:
        return "buy_now"
    if item.kind == "acquire":
        return "offer_to_sell"
    return None
