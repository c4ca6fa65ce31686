"""Conversation synchronization engine.

Reconciles three asynchronous sources into one view: REST snapshots, the live
push channel, and user actions. Everything runs on one event loop; network
calls are the only suspension points, so handlers never interleave
mid-mutation.

Example:
    config = Config(local_user_id=7, auth_token=token)
    async with ChatEngine(config) as engine:
        await engine.select(42)
        await engine.send("Is the bike still available?")
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, assert_never

from tradetalk.api import HttpMarketplaceAPI
from tradetalk.channel import PushChannel
from tradetalk.conversations import ConversationStore
from tradetalk.errors import ActionUnavailableError, APIError, ChannelNotReadyError
from tradetalk.handoff import HandoffBridge, JSONFileHandoffSlot, MemoryHandoffSlot
from tradetalk.items import ItemSnapshotCache, quick_action_for
from tradetalk.messages import ActiveSelection, MessageLog
from tradetalk.models import ItemSnapshot, coerce_id, fallback_name
from tradetalk.notices import Notice, NoticeBoard
from tradetalk.protocol import (
    ErrorFrame,
    MessageFrame,
    OutboundMessageFrame,
    SummaryFrame,
)
from tradetalk.read_state import ReadStateReconciler
from tradetalk.retry import RetryPolicy, retry_async
from tradetalk.telemetry import SERVER_ERROR, EventSink, LoggingSink

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine
    from types import TracebackType

    from tradetalk.api import MarketplaceAPI
    from tradetalk.channel import PushSocket
    from tradetalk.config import Config
    from tradetalk.handoff import HandoffSlot
    from tradetalk.models import (
        Conversation,
        History,
        ItemId,
        ItemLookup,
        Message,
        OrderConfirmation,
        QuickAction,
        UserId,
    )

logger = logging.getLogger(__name__)

_CHANNEL_DOWN = "Live updates are unavailable; messages cannot be sent right now."


class ChatEngine:
    """Owns the conversation state of one signed-in user.

    Components are created per engine and torn down by ``aclose()``; none of
    them is shared between engines.
    """

    def __init__(
        self,
        config: Config,
        *,
        api: MarketplaceAPI | None = None,
        slot: HandoffSlot | None = None,
        sink: EventSink | None = None,
        connector: Callable[[str], Awaitable[PushSocket]] | None = None,
        on_notice: Callable[[Notice], None] | None = None,
    ) -> None:
        self.config = config
        self.local_user_id: UserId = config.local_user_id  # type: ignore[assignment]

        self._owns_api = api is None
        self._api: Any = api or HttpMarketplaceAPI(
            str(config.api_url),
            str(config.auth_token),
            timeout_s=config.request_timeout_s,
            retry=config.retry,
        )
        if slot is None:
            slot = (
                JSONFileHandoffSlot(config.handoff_path)
                if config.handoff_path is not None
                else MemoryHandoffSlot()
            )

        self.notices = NoticeBoard(on_notice)
        self.sink = sink or LoggingSink()
        self.selection = ActiveSelection()
        self.store = ConversationStore(self.local_user_id)
        self.items = ItemSnapshotCache(self._api.fetch_item_detail)
        self.read_state = ReadStateReconciler(self.store, self._api)
        self.log = MessageLog(
            self._api,
            self.selection,
            self.read_state,
            self.notices,
            local_user_id=self.local_user_id,
        )
        self.handoff = HandoffBridge(slot, self.store, self.items)
        self.channel = PushChannel(
            str(config.push_url),
            self.handle_frame,
            sink=self.sink,
            connector=connector,
            on_disconnect=self._on_channel_lost,
        )

        self._item_context: ItemLookup | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    # ---- Views ----

    @property
    def active_id(self) -> UserId | None:
        return self.selection.current

    @property
    def item_context(self) -> ItemLookup | None:
        """Item context visible for the active conversation."""
        return self._item_context

    @property
    def quick_action(self) -> QuickAction | None:
        return quick_action_for(self._item_context, self.local_user_id)

    def conversations(self) -> tuple[Conversation, ...]:
        return self.store.list()

    def messages(self) -> tuple[Message, ...]:
        return self.log.messages()

    # ---- Lifecycle ----

    async def activate(self) -> None:
        """Load conversations, open the push channel, then open any handoff.

        The pending handoff is taken before the first network call so that a
        concurrent activation cannot consume it twice.
        """
        handoff = self.handoff.consume_pending()

        await self.refresh()
        if not await self.channel.connect(self.config.auth_token):
            self.notices.post(Notice(kind="channel_unavailable", message=_CHANNEL_DOWN))

        if handoff is not None:
            conv = self.handoff.prepare(handoff)
            logger.info("Opening handed-off conversation %r", conv.counterpart_id)
            await self.select(conv.counterpart_id)

    async def aclose(self) -> None:
        """Tear down the channel, background work and per-session caches."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self.channel.close()
        if self._owns_api:
            await self._api.aclose()

        self.items.clear()
        self.selection.clear()
        self.log.reset(None)
        self.store.clear()
        self._item_context = None

    async def __aenter__(self) -> ChatEngine:
        await self.activate()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def wait_idle(self) -> None:
        """Wait for background item resolutions to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---- User actions ----

    async def refresh(self) -> bool:
        """Reload the conversation list; False when the fetch failed.

        A failure leaves the current list untouched and posts a notice.
        """
        try:
            conversations = await self._api.list_conversations()
        except APIError as exc:
            self.notices.post(
                Notice(
                    kind="conversations_unavailable",
                    message=f"Could not load conversations: {exc}",
                    hint=exc.hint,
                )
            )
            return False

        active = self.selection.current
        previous = self.store.get(active) if active is not None else None
        self.store.replace_all(conversations)
        if active is not None:
            self.store.ensure_placeholder(
                active, previous.counterpart_name if previous else None
            )
        self.notices.dismiss("conversations_unavailable")
        return True

    async def select(self, counterpart_id: UserId) -> History | None:
        """Open a conversation: mark it read, load history, restore item context.

        Returns:
            The loaded history, or None when the load failed or went stale.
        """
        cid = coerce_id(counterpart_id)
        self.selection.set(cid)
        self.store.ensure_placeholder(cid, None)
        self._item_context = self.store.item_for(cid)

        history = await self.log.load(cid)
        if history is None:
            return None

        if history.counterpart.name != fallback_name(cid):
            self.store.rename(cid, history.counterpart.name)
        if self._item_context is None:
            item_id = _latest_item_id(history.messages)
            if item_id is not None:
                self._spawn(self._resolve_item_context(cid, item_id))
        return history

    def deselect(self) -> None:
        """Close the active conversation; other unread counts are untouched."""
        self.selection.clear()
        self.log.reset(None)
        self._item_context = None

    async def send(
        self,
        content: str,
        *,
        to: UserId | None = None,
        item_id: ItemId | None = None,
    ) -> None:
        """Send a message over the push channel.

        Nothing is echoed locally: the message appears once the server sends
        it back as a ``message`` frame.

        Raises:
            ValueError: If there is no target conversation or the content is
                empty.
            ChannelNotReadyError: If the push channel is not connected.
        """
        target = coerce_id(to) if to is not None else self.selection.current
        if target is None:
            raise ValueError("No conversation selected")
        text = content.strip()
        if not text:
            raise ValueError("Message content must not be empty")

        frame = OutboundMessageFrame(to_user_id=target, content=text, item_id=item_id)
        try:
            await self.channel.send(frame)
        except ChannelNotReadyError as exc:
            self.notices.post(
                Notice(
                    kind="channel_unavailable",
                    message=_CHANNEL_DOWN,
                    counterpart_id=target,
                    hint=exc.hint,
                )
            )
            raise

    async def place_order(self) -> OrderConfirmation | None:
        """Run the ``buy_now`` quick action for the active item context.

        Raises:
            ActionUnavailableError: If the active item does not offer buy-now.
        """
        item = self._item_context
        if self.quick_action != "buy_now" or not isinstance(item, ItemSnapshot):
            raise ActionUnavailableError(
                "Buy-now is not available for this conversation",
                hint="Only available sale listings owned by someone else can be bought.",
            )
        try:
            return await self._api.place_order(item.id)
        except APIError as exc:
            self.notices.post(
                Notice(
                    kind="order_failed",
                    message=f"Order failed: {exc}",
                    counterpart_id=self.selection.current,
                    hint=exc.hint,
                )
            )
            return None

    async def reconnect(self, policy: RetryPolicy | None = None) -> bool:
        """Reopen the push channel using a bounded backoff policy."""
        if self.channel.connected:
            return True

        async def _attempt() -> None:
            if not await self.channel.connect(self.config.auth_token):
                raise ChannelNotReadyError("reconnect attempt failed")

        try:
            await retry_async(
                _attempt,
                policy=policy or self.config.reconnect,
                should_retry=lambda exc: isinstance(exc, ChannelNotReadyError),
            )
        except ChannelNotReadyError:
            self.notices.post(Notice(kind="channel_unavailable", message=_CHANNEL_DOWN))
            return False
        self.notices.dismiss("channel_unavailable")
        return True

    # ---- Push events ----

    async def handle_frame(
        self, frame: MessageFrame | SummaryFrame | ErrorFrame
    ) -> None:
        """Apply one inbound push frame."""
        match frame:
            case MessageFrame():
                self._apply_message(frame.data.to_message())
            case SummaryFrame():
                self.store.upsert_from_push(frame.data.to_conversation())
            case ErrorFrame():
                self.sink.record_event(SERVER_ERROR, message=frame.message)
            case _:
                assert_never(frame)

    def _apply_message(self, message: Message) -> None:
        cid = message.counterpart_of(self.local_user_id)
        self.log.append(message)
        self.store.upsert_from_incoming(message, active_id=self.selection.current)
        if message.item_id is not None:
            self._spawn(self._resolve_item_context(cid, message.item_id))

    async def _resolve_item_context(
        self, counterpart_id: UserId, item_id: ItemId
    ) -> None:
        item = await self.items.resolve(item_id)
        if not isinstance(item, ItemSnapshot):
            return
        self.store.attach_item(counterpart_id, item)
        if self.selection.is_active(counterpart_id):
            self._item_context = item

    def _on_channel_lost(self) -> None:
        self.notices.post(Notice(kind="channel_unavailable", message=_CHANNEL_DOWN))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background item resolution failed", exc_info=exc)


def _latest_item_id(messages: tuple[Message, ...]) -> ItemId | None:
    for message in reversed(messages):
        if message.item_id is not None:
            return message.item_id
    return None
