"""Configuration: frozen Config with environment auto-resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

from dotenv import load_dotenv

from tradetalk.errors import ConfigurationError
from tradetalk.models import UserId, coerce_id
from tradetalk.retry import RetryPolicy

load_dotenv()

DEFAULT_API_URL = "http://localhost:3000/api"
DEFAULT_PUSH_URL = "ws://localhost:3000/ws"

_USER_ENV = "TRADETALK_USER_ID"
_TOKEN_ENV = "TRADETALK_TOKEN"
_API_URL_ENV = "TRADETALK_API_URL"
_PUSH_URL_ENV = "TRADETALK_PUSH_URL"
_HANDOFF_ENV = "TRADETALK_HANDOFF_PATH"


def _default_reconnect() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, initial_delay_s=1.0, max_delay_s=30.0)


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one chat engine.

    The local user and token come from the session collaborator; when omitted
    they are read from ``TRADETALK_USER_ID`` and ``TRADETALK_TOKEN``.

    Example:
        config = Config(local_user_id=7, auth_token="...")
    """

    local_user_id: UserId | None = None
    auth_token: str | None = None
    api_url: str | None = None
    push_url: str | None = None
    #: Durable handoff slot; an in-memory slot is used when *None*.
    handoff_path: Path | None = None
    request_timeout_s: float = 10.0
    #: Reads make a single attempt by default; retries are user-driven.
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: Used only by explicit ``ChatEngine.reconnect()`` calls.
    reconnect: RetryPolicy = field(default_factory=_default_reconnect)

    def __post_init__(self) -> None:
        """Auto-resolve environment values and validate configuration."""
        user = self.local_user_id
        if user is None:
            user = os.environ.get(_USER_ENV)
        if user is None or (isinstance(user, str) and not user.strip()):
            raise ConfigurationError(
                "local_user_id required",
                hint=f"Set {_USER_ENV} or pass local_user_id=...",
            )
        try:
            object.__setattr__(self, "local_user_id", coerce_id(user))
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid local_user_id: {user!r}",
                hint="User ids are integers or non-empty strings.",
            ) from e

        if self.auth_token is None:
            object.__setattr__(self, "auth_token", os.environ.get(_TOKEN_ENV))
        if not self.auth_token:
            raise ConfigurationError(
                "auth_token required",
                hint=f"Set {_TOKEN_ENV} environment variable or pass auth_token=...",
            )

        if self.api_url is None:
            object.__setattr__(
                self, "api_url", os.environ.get(_API_URL_ENV, DEFAULT_API_URL)
            )
        if self.push_url is None:
            object.__setattr__(
                self, "push_url", os.environ.get(_PUSH_URL_ENV, DEFAULT_PUSH_URL)
            )
        if not str(self.push_url).startswith(("ws://", "wss://")):
            raise ConfigurationError(
                f"push_url must be a ws:// or wss:// URL, got {self.push_url!r}",
                hint=f"Set {_PUSH_URL_ENV} or pass push_url=...",
            )

        if self.handoff_path is None:
            env_path = os.environ.get(_HANDOFF_ENV)
            if env_path:
                object.__setattr__(self, "handoff_path", Path(env_path))
        elif not isinstance(self.handoff_path, Path):
            object.__setattr__(self, "handoff_path", Path(self.handoff_path))

        if self.request_timeout_s <= 0:
            raise ConfigurationError(
                f"request_timeout_s must be > 0, got {self.request_timeout_s}",
                hint="This bounds each REST call in seconds.",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(local_user_id={self.local_user_id!r}, api_url={self.api_url!r}, "
            f"push_url={self.push_url!r}, "
            f"auth_token={'[REDACTED]' if self.auth_token else None})"
        )

    __repr__ = __str__
