"""Polls submitted transactions until they are mined."""

from __future__ import annotations

import asyncio

import structlog

from src.core.config import LiquidatorSettings
from src.core.events import EventChannel
from src.core.types import TransactionHash
from src.execution.exchange import TradeExecutor
from src.utils.tasks import cancel_task

log = structlog.get_logger()


class TransactionTracker:
    """Tracks outstanding transaction hashes to completion.

    The poll task only runs while hashes are outstanding. It is independent of
    the coordinator's start/stop cycle: a submitted trade is always followed to
    its receipt.

    Events:
        transaction_complete: ``(tx_hash, success)`` once per confirmed hash
    """

    def __init__(self, settings: LiquidatorSettings, executor: TradeExecutor) -> None:
        self.settings = settings
        self.executor = executor
        self.transaction_complete: EventChannel[TransactionHash, bool] = EventChannel(
            "transaction_complete"
        )
        self._pending: list[TransactionHash] = []
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> list[TransactionHash]:
        return list(self._pending)

    def register(self, tx_hash: TransactionHash) -> None:
        """Queue ``tx_hash`` and start polling if idle."""
        if tx_hash not in self._pending:
            self._pending.append(tx_hash)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._poll_loop(), name="transaction_poll")
        log.info("transactions.registered", tx_hash=tx_hash, pending=len(self._pending))

    async def check_pending(self) -> None:
        """Poll every outstanding hash once; errors keep the hash queued."""
        for tx_hash in list(self._pending):
            try:
                status = await self.executor.poll_status(tx_hash)
            except Exception as e:
                log.warning("transactions.poll_failed", tx_hash=tx_hash, error=str(e))
                continue
            if not status.confirmed:
                continue
            self._pending.remove(tx_hash)
            log.info("transactions.confirmed", tx_hash=tx_hash, success=status.success)
            await self.transaction_complete.publish(tx_hash, status.success)

    async def close(self) -> None:
        """Stop polling (outstanding hashes stay queued)."""
        task, self._task = self._task, None
        await cancel_task(task)

    async def _poll_loop(self) -> None:
        while self._pending:
            await asyncio.sleep(self.settings.transaction_poll_interval)
            await self.check_pending()
