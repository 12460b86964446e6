"""
In-memory store for state values issued by /login, consumed once by /callback. TTL to avoid unbounded growth.
"""
import time

# Operator has 10 minutes to finish the consent screen
STATE_TTL = 600

_pending: dict[str, float] = {}


def store_state(state: str) -> None:
    _clean_expired()
    _pending[state] = time.monotonic()


def consume_state(state: str) -> bool:
    """True if state was issued and not yet expired. Single use."""
    created_at = _pending.pop(state, None)
    if created_at is None:
        return False
    return (time.monotonic() - created_at) <= STATE_TTL


def _clean_expired() -> None:
    now = time.monotonic()
    expired = [s for s, created_at in _pending.items() if (now - created_at) > STATE_TTL]
    for s in expired:
        del _pending[s]
