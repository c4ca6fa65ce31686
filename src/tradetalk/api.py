"""Marketplace REST collaborator: protocol plus an httpx implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from tradetalk._http import RETRYABLE_STATUS_CODES
from tradetalk.errors import APIError, _walk_exception_chain
from tradetalk.models import (
    Conversation,
    History,
    ItemId,
    ItemSnapshot,
    OrderConfirmation,
    UserId,
)
from tradetalk.protocol import ConversationPayload, HistoryPayload
from tradetalk.retry import (
    RetryPolicy,
    retry_async,
    should_retry_read,
    should_retry_side_effect,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@runtime_checkable
class MarketplaceAPI(Protocol):
    """The REST endpoints the engine consumes."""

    async def list_conversations(self) -> list[Conversation]:
        """GET conversations."""
        ...

    async def fetch_history(self, counterpart_id: UserId) -> History:
        """GET conversations/{counterpart_id}/messages."""
        ...

    async def mark_read(self, counterpart_id: UserId) -> None:
        """POST conversations/{counterpart_id}/read."""
        ...

    async def fetch_item_detail(self, item_id: ItemId) -> ItemSnapshot:
        """GET items/{item_id}/detail."""
        ...

    async def place_order(self, item_id: ItemId) -> OrderConfirmation:
        """POST orders."""
        ...


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a Retry-After delay in seconds."""
    for e in _walk_exception_chain(exc):
        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        raw = headers.get("Retry-After")
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def _server_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return None


def wrap_http_error(exc: BaseException, *, phase: str) -> APIError:
    """Map httpx/validation failures into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code: int | None = None
    detail = str(exc)
    hint: str | None = None
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        detail = _server_message(exc.response) or exc.response.reason_phrase
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif status_code is None and isinstance(exc, httpx.RequestError):
        retryable = True

    if status_code in (401, 403):
        hint = "Check the auth token (TRADETALK_TOKEN or Config.auth_token)."
    elif isinstance(exc, (ValidationError, ValueError)) and status_code is None:
        hint = "The server response did not match the expected shape."

    status_note = f" (status={status_code})" if status_code is not None else ""
    return APIError(
        f"{phase} failed{status_note}: {detail}" if detail else f"{phase} failed{status_note}",
        hint=hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        phase=phase,
    )


class HttpMarketplaceAPI:
    """REST client for the marketplace backend.

    Sends the auth token as a Bearer header on every request. Reads are
    retried according to ``retry``; writes only on explicit server signals.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        *,
        timeout_s: float = 10.0,
        retry: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._retry = retry or RetryPolicy()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._base_url = base_url.rstrip("/") + "/"
        self._headers = {"Authorization": f"Bearer {auth_token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _url(self, path: str) -> str:
        return self._base_url + path.lstrip("/")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._client.request(
            method, self._url(path), headers=self._headers, json=json_body
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def _call(
        self,
        phase: str,
        factory: Callable[[], Awaitable[Any]],
        *,
        idempotent: bool,
    ) -> Any:
        async def _attempt() -> Any:
            try:
                return await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_http_error(e, phase=phase) from e

        return await retry_async(
            _attempt,
            policy=self._retry,
            should_retry=should_retry_read if idempotent else should_retry_side_effect,
        )

    async def list_conversations(self) -> list[Conversation]:
        async def _fetch() -> list[Conversation]:
            body = await self._request("GET", "conversations")
            if isinstance(body, dict):
                body = body.get("conversations", [])
            if not isinstance(body, list):
                raise ValueError("conversation list must be a JSON array")
            return [
                ConversationPayload.model_validate(item).to_conversation()
                for item in body
            ]

        return await self._call("conversations", _fetch, idempotent=True)

    async def fetch_history(self, counterpart_id: UserId) -> History:
        async def _fetch() -> History:
            body = await self._request(
                "GET", f"conversations/{counterpart_id}/messages"
            )
            return HistoryPayload.model_validate(body).to_history()

        return await self._call("history", _fetch, idempotent=True)

    async def mark_read(self, counterpart_id: UserId) -> None:
        async def _post() -> None:
            await self._request("POST", f"conversations/{counterpart_id}/read")

        await self._call("read", _post, idempotent=False)

    async def fetch_item_detail(self, item_id: ItemId) -> ItemSnapshot:
        async def _fetch() -> ItemSnapshot:
            body = await self._request("GET", f"items/{item_id}/detail")
            if not isinstance(body, dict):
                raise ValueError("item detail must be a JSON object")
            return ItemSnapshot.from_payload(body)

        return await self._call("item", _fetch, idempotent=True)

    async def place_order(self, item_id: ItemId) -> OrderConfirmation:
        async def _post() -> OrderConfirmation:
            body = await self._request(
                "POST", "orders", json_body={"listingId": item_id}
            )
            body = body if isinstance(body, dict) else {}
            return OrderConfirmation(
                order_id=body.get("orderId"),
                message=str(body.get("message", "")),
            )

        logger.debug("Placing order for item %r", item_id)
        return await self._call("order", _post, idempotent=False)
