"""Push channel adapter: owns the live WebSocket connection.

State machine: ``DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED``.
Connect failures land back in ``DISCONNECTED`` without retrying; reconnect
policy belongs to the caller. Sends never queue: they fail fast with
``ChannelNotReadyError`` unless the channel is connected.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from tradetalk.errors import ChannelNotReadyError, EnvelopeError
from tradetalk.protocol import parse_frame
from tradetalk.telemetry import ENVELOPE_DROPPED, EventSink, LoggingSink

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from tradetalk.protocol import (
        ErrorFrame,
        MessageFrame,
        OutboundMessageFrame,
        SummaryFrame,
    )

    FrameHandler = Callable[
        [MessageFrame | SummaryFrame | ErrorFrame], Awaitable[None]
    ]

logger = logging.getLogger(__name__)


class ChannelState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PushSocket(Protocol):
    """The slice of a WebSocket connection the adapter relies on."""

    async def send(self, message: str) -> None: ...  # noqa: D102
    async def close(self) -> None: ...  # noqa: D102
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...  # noqa: D105


async def websocket_connector(url: str) -> Any:
    """Open a WebSocket with the ``websockets`` asyncio client."""
    return await connect(url, open_timeout=10)


def with_token(url: str, auth_token: str) -> str:
    """Return *url* with the auth token set as the ``token`` query parameter."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
    query.append(("token", auth_token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class PushChannel:
    """Bidirectional push channel with typed inbound dispatch.

    *on_disconnect* is called when the connection ends without ``close()``:
    a server hang-up, a transport error or a fatal dispatch error.
    """

    def __init__(
        self,
        url: str,
        on_frame: FrameHandler,
        *,
        sink: EventSink | None = None,
        connector: Callable[[str], Awaitable[PushSocket]] | None = None,
        on_disconnect: Callable[[], None] | None = None,
    ) -> None:
        self._url = url
        self._on_frame = on_frame
        self._on_disconnect = on_disconnect
        self._sink = sink or LoggingSink()
        self._connector = connector or websocket_connector
        self._state = ChannelState.DISCONNECTED
        self._socket: PushSocket | None = None
        self._reader: asyncio.Task[None] | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def connected(self) -> bool:
        """Observable connectivity flag."""
        return self._state is ChannelState.CONNECTED

    async def connect(self, auth_token: str | None) -> bool:
        """Open the channel; on failure stay ``DISCONNECTED`` and return False."""
        if self._state is not ChannelState.DISCONNECTED:
            return self.connected
        if not auth_token:
            logger.warning("Push channel not opened: no auth token")
            return False

        self._state = ChannelState.CONNECTING
        try:
            socket = await self._connector(with_token(self._url, auth_token))
        except asyncio.CancelledError:
            self._state = ChannelState.DISCONNECTED
            raise
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning("Push channel connect failed: %s", exc)
            self._state = ChannelState.DISCONNECTED
            return False

        self._socket = socket
        self._state = ChannelState.CONNECTED
        self._reader = asyncio.create_task(
            self._read_loop(socket), name="tradetalk-push-reader"
        )
        self._reader.add_done_callback(self._on_reader_done)
        logger.info("Push channel connected")
        return True

    async def send(self, frame: OutboundMessageFrame) -> None:
        """Send one frame.

        Raises:
            ChannelNotReadyError: If the channel is not connected or the
                connection drops during the send.
        """
        socket = self._socket
        if self._state is not ChannelState.CONNECTED or socket is None:
            raise ChannelNotReadyError(
                "channel not ready",
                hint="The message was not sent; reconnect and try again.",
            )
        try:
            await socket.send(frame.to_json())
        except ConnectionClosed as exc:
            self._mark_disconnected(socket)
            raise ChannelNotReadyError(
                "channel not ready: connection closed during send",
                hint="The message was not sent; reconnect and try again.",
            ) from exc

    async def close(self) -> None:
        socket, reader = self._socket, self._reader
        self._socket = None
        self._reader = None
        self._state = ChannelState.DISCONNECTED
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if socket is not None:
            await _close_quietly(socket)

    async def wait_closed(self) -> None:
        """Wait until the reader stops; re-raises a fatal dispatch error."""
        reader = self._reader
        if reader is not None:
            await reader

    async def deliver(self, raw: str | bytes) -> None:
        """Parse one raw frame and hand it to the frame handler.

        Malformed frames are logged and dropped; unknown kinds are ignored.
        """
        try:
            frame = parse_frame(raw)
        except EnvelopeError as exc:
            logger.warning("Dropping malformed push frame: %s", exc)
            self._sink.record_event(ENVELOPE_DROPPED, reason=str(exc))
            return
        if frame is None:
            logger.debug("Ignoring push frame of unknown kind")
            return
        await self._on_frame(frame)

    async def _read_loop(self, socket: PushSocket) -> None:
        try:
            async for raw in socket:
                await self.deliver(raw)
        except ConnectionClosed as exc:
            logger.info("Push channel closed: %s", exc)
        finally:
            # Only a reader that stopped on its own still owns the socket;
            # close() detaches it before cancelling.
            if self._socket is socket:
                self._mark_disconnected(socket)
                await _close_quietly(socket)
                if self._on_disconnect is not None:
                    self._on_disconnect()

    def _mark_disconnected(self, socket: PushSocket) -> None:
        if self._socket is socket:
            self._socket = None
            self._state = ChannelState.DISCONNECTED

    def _on_reader_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Push reader stopped on a fatal error", exc_info=exc)


async def _close_quietly(socket: PushSocket) -> None:
    try:
        await socket.close()
    except (OSError, WebSocketException) as exc:
        logger.debug("Ignoring error while closing push socket: %s", exc)
