"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and the collaborator
doubles shared by the suite. Environment fixtures are autouse.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from tradetalk.config import Config
from tradetalk.engine import ChatEngine
from tradetalk.errors import APIError
from tradetalk.handoff import MemoryHandoffSlot
from tradetalk.models import (
    Conversation,
    History,
    ItemSnapshot,
    OrderConfirmation,
)
from tradetalk.telemetry import RecordingSink

LOCAL_USER = 1

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeMarketplaceAPI:
    """REST collaborator double.

    Records every call, serves canned data, and can hold a call open on an
    ``asyncio.Event`` registered under ``gates`` (keys like ``"history:42"``)
    or fail it with an error registered under ``failures`` (keys like
    ``"history"`` or ``"history:42"``).
    """

    conversations: list[Conversation] = field(default_factory=list)
    histories: dict[Any, History] = field(default_factory=dict)
    items: dict[Any, ItemSnapshot] = field(default_factory=dict)
    failures: dict[str, APIError] = field(default_factory=dict)
    gates: dict[str, asyncio.Event] = field(default_factory=dict)
    calls: list[tuple[str, Any]] = field(default_factory=list)

    def count(self, phase: str) -> int:
        return sum(1 for name, _ in self.calls if name == phase)

    def gate(self, key: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[key] = event
        return event

    async def _enter(self, phase: str, arg: Any = None) -> None:
        self.calls.append((phase, arg))
        key = f"{phase}:{arg}" if arg is not None else phase
        for k in (key, phase):
            event = self.gates.get(k)
            if event is not None:
                await event.wait()
        for k in (key, phase):
            err = self.failures.get(k)
            if err is not None:
                raise err

    async def list_conversations(self) -> list[Conversation]:
        await self._enter("conversations")
        return list(self.conversations)

    async def fetch_history(self, counterpart_id: Any) -> History:
        await self._enter("history", counterpart_id)
        history = self.histories.get(counterpart_id)
        if history is None:
            raise APIError("history failed (status=404)", status_code=404, phase="history")
        return history

    async def mark_read(self, counterpart_id: Any) -> None:
        await self._enter("read", counterpart_id)

    async def fetch_item_detail(self, item_id: Any) -> ItemSnapshot:
        await self._enter("item", item_id)
        item = self.items.get(item_id)
        if item is None:
            raise APIError("item failed (status=404)", status_code=404, phase="item")
        return item

    async def place_order(self, item_id: Any) -> OrderConfirmation:
        await self._enter("order", item_id)
        return OrderConfirmation(order_id=500, message="Order created successfully!")


class FakeSocket:
    """In-memory WebSocket: frames pushed by the test are yielded to the reader."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    def push(self, raw: str | bytes) -> None:
        self._inbox.put_nowait(raw)

    def hang_up(self) -> None:
        self._inbox.put_nowait(None)

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self.hang_up()

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str | bytes:
        raw = await self._inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


@dataclass
class FakeConnector:
    """Connector double: fails the first ``failures`` attempts, then connects."""

    failures: int = 0
    urls: list[str] = field(default_factory=list)
    sockets: list[FakeSocket] = field(default_factory=list)

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_tradetalk_env(request, monkeypatch):
    """Clear TRADETALK_* variables so the host environment cannot leak in.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("TRADETALK_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def config() -> Config:
    return Config(
        local_user_id=LOCAL_USER,
        auth_token="test-token",
        api_url="http://market.test/api",
        push_url="ws://market.test/ws",
    )


@pytest.fixture
def api() -> FakeMarketplaceAPI:
    return FakeMarketplaceAPI()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def slot() -> MemoryHandoffSlot:
    return MemoryHandoffSlot()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(config, api, connector, slot, sink) -> ChatEngine:
    return ChatEngine(config, api=api, slot=slot, sink=sink, connector=connector)
