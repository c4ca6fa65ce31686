"""Small HTTP-related constants shared across tradetalk.

Kept separate to avoid circular imports between the REST client and retry.
"""

from __future__ import annotations

# Status codes that signal a transient server-side condition.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})
