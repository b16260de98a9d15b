"""Typed publish/subscribe channels.

Each component owns one channel per event kind and publishes to it when its
state actually changes. Subscribers may be plain callables or coroutine
functions; a failing subscriber is logged and does not affect the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeAlias, TypeVarTuple, Unpack

import structlog

log = structlog.get_logger()

Ts = TypeVarTuple("Ts")

Handler: TypeAlias = Callable[[Unpack[Ts]], Awaitable[None] | None]


class EventChannel(Generic[Unpack[Ts]]):
    """Callback registry for a single event kind."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler[*Ts]] = []

    def subscribe(self, handler: Handler[*Ts]) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._handlers)

    async def publish(self, *args: *Ts) -> None:
        """Deliver an event to every subscriber in registration order."""
        for handler in list(self._handlers):
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                log.exception("events.handler_failed", channel=self.name)
