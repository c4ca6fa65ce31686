from __future__ import annotations

import pytest

from tradetalk.errors import (
    ActionUnavailableError,
    APIError,
    ChannelNotReadyError,
    ConfigurationError,
    EnvelopeError,
    InternalError,
    TradetalkError,
    _walk_exception_chain,
)

pytestmark = pytest.mark.unit


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=429,
        retry_after_s=2.0,
        phase="history",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.phase == "history"


def test_api_error_defaults_to_none() -> None:
    err = APIError("fail")
    assert err.hint is None
    assert err.retryable is None
    assert err.status_code is None
    assert err.retry_after_s is None
    assert err.phase is None


@pytest.mark.parametrize(
    "cls",
    [
        ConfigurationError,
        InternalError,
        EnvelopeError,
        ChannelNotReadyError,
        ActionUnavailableError,
        APIError,
    ],
)
def test_every_error_is_a_tradetalk_error(cls: type[TradetalkError]) -> None:
    err = cls("x", hint="h")
    assert isinstance(err, TradetalkError)
    assert err.hint == "h"


def test_exception_chain_walk_is_cycle_safe() -> None:
    inner = ValueError("inner")
    outer = RuntimeError("outer")
    outer.__cause__ = inner
    inner.__context__ = outer

    assert list(_walk_exception_chain(outer)) == [outer, inner]
