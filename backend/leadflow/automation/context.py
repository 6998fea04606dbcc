"""Context variable carrying the hop count of the run currently executing."""

from __future__ import annotations

from contextvars import ContextVar, Token

_hops: ContextVar[int] = ContextVar("automation_hops", default=0)


def get_hops() -> int:
    return _hops.get()


def set_hops(value: int) -> Token[int]:
    return _hops.set(value)


def reset_hops(token: Token[int]) -> None:
    _hops.reset(token)
