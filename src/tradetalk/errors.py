"""Exception hierarchy for tradetalk."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class TradetalkError(Exception):
    """Base exception for all tradetalk errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(TradetalkError):
    """Configuration validation or resolution failed."""


class InternalError(TradetalkError):
    """A tradetalk internal error (bug) or invariant violation."""


class EnvelopeError(TradetalkError):
    """An inbound push frame or REST payload could not be parsed."""


class ChannelNotReadyError(TradetalkError):
    """A send was attempted while the push channel is not connected."""


class ActionUnavailableError(TradetalkError):
    """A quick action was requested for an item that does not allow it."""


class APIError(TradetalkError):
    """A marketplace REST call failed.

    The HTTP client attaches retry metadata so callers can decide on a retry
    without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.phase = phase


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
