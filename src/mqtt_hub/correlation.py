"""
Correlation ids for tagging log lines of one logical operation.

A drain cycle, a lifecycle start/stop or a settings update each run inside
their own correlation scope so their log lines can be grouped, even when they
interleave on the event loop.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "mqtt_hub_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a new 32 character hex id."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Run a block under a correlation id, restoring the previous one on exit.

    Args:
        correlation_id: id to use, a fresh one is generated when omitted

    Yields:
        The correlation id in effect inside the block
    """
    token = _correlation_id.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id.get() or ""
    finally:
        _correlation_id.reset(token)

