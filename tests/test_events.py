"""Tests for typed event channels."""

import pytest

from src.core.events import EventChannel


@pytest.mark.asyncio
async def test_sync_and_async_handlers_in_order() -> None:
    channel: EventChannel[str, int] = EventChannel("test")
    calls: list[tuple[str, str, int]] = []

    def on_sync(name: str, value: int) -> None:
        calls.append(("sync", name, value))

    async def on_async(name: str, value: int) -> None:
        calls.append(("async", name, value))

    channel.subscribe(on_sync)
    channel.subscribe(on_async)
    await channel.publish("a", 1)

    assert calls == [("sync", "a", 1), ("async", "a", 1)]


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others() -> None:
    channel: EventChannel[int] = EventChannel("test")
    seen: list[int] = []

    def broken(_value: int) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    await channel.publish(7)

    assert seen == [7]


@pytest.mark.asyncio
async def test_unsubscribe() -> None:
    channel: EventChannel[int] = EventChannel("test")
    seen: list[int] = []
    unsubscribe = channel.subscribe(seen.append)
    assert len(channel) == 1

    unsubscribe()
    unsubscribe()
    await channel.publish(1)

    assert seen == []
    assert len(channel) == 0
