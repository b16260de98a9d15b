"""Latest oracle prices with inverse normalization and fiat conversion."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import structlog

from src.core.config import LiquidatorSettings
from src.core.events import EventChannel
from src.core.profitability import invert_price
from src.core.registry import NetworkRegistry, Oracle
from src.core.types import PairKey, RawPrice, TokenSymbol, pair_key
from src.oracles.chainlink import OracleReader, decode_answer_updated
from src.utils.tasks import cancel_task

log = structlog.get_logger()

BASE_FIAT = "USD"
WETH = "WETH"


class PriceOracleTracker:
    """Tracks the last raw price of every configured oracle.

    Prices arrive from an ``AnswerUpdated`` log subscription and from a
    periodic refresh of every oracle. ``price_updated`` fires with
    ``(base_token, quote_token, price)`` only when a non-fiat pair's price
    actually changes.
    """

    def __init__(
        self,
        settings: LiquidatorSettings,
        registry: NetworkRegistry,
        reader: OracleReader,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.reader = reader
        self.price_updated: EventChannel[TokenSymbol, TokenSymbol, RawPrice] = EventChannel(
            "price_updated"
        )
        self._last_prices: dict[PairKey, RawPrice] = {}
        self._refresh_task: asyncio.Task[None] | None = None
        self._subscription_task: asyncio.Task[None] | None = None
        self._running = False

    async def start(self) -> None:
        """Refresh once, then start the log subscription and the refresh timer."""
        if self._running:
            await self.stop()
        self._running = True
        await self.refresh_all()
        self._subscription_task = asyncio.create_task(
            self._subscription_loop(), name="oracle_subscription"
        )
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="oracle_refresh")
        log.info("oracle.started", oracles=len(self.registry.oracles))

    async def stop(self) -> None:
        """Cancel the subscription and the refresh timer."""
        self._running = False
        subscription, refresh = self._subscription_task, self._refresh_task
        self._subscription_task = self._refresh_task = None
        try:
            await cancel_task(subscription)
        finally:
            await cancel_task(refresh)
        log.info("oracle.stopped")

    def get_last_price(self, base_token: TokenSymbol, quote_token: TokenSymbol) -> RawPrice | None:
        return self._last_prices.get(pair_key(base_token, quote_token))

    def get_token_fiat_price(self, token: TokenSymbol, fiat_asset: str) -> Decimal | None:
        """Price of ``token`` in ``fiat_asset``, anchored through WETH.

        Returns:
            The price, or None when any link of WETH->fiat or token->WETH is
            unknown
        """
        weth_usd = self._last_prices.get(pair_key(WETH, BASE_FIAT))
        if weth_usd is None:
            return None
        weth_fiat = Decimal(weth_usd).scaleb(-8)

        if fiat_asset != BASE_FIAT:
            fiat_usd = self._last_prices.get(pair_key(fiat_asset, BASE_FIAT))
            if fiat_usd is None:
                return None
            # Cross rates are USD per unit of the fiat asset, so divide rather than multiply
            weth_fiat = weth_fiat / Decimal(fiat_usd).scaleb(-8)

        if token == WETH:
            return weth_fiat

        token_weth = self._last_prices.get(pair_key(token, WETH))
        if token_weth is None:
            return None
        return Decimal(token_weth).scaleb(-18) * weth_fiat

    async def trigger_all(self) -> None:
        """Re-publish every known non-fiat price to prime subscribers."""
        for oracle in self.registry.oracles:
            price = self._last_prices.get(oracle.pair)
            if price is not None and not oracle.is_fiat:
                await self.price_updated.publish(oracle.base_token, oracle.quote_token, price)

    async def refresh_all(self) -> None:
        """Read every oracle once; a failing oracle is skipped."""
        for oracle in self.registry.oracles:
            try:
                raw = await self.reader.latest_answer(oracle.address)
            except Exception as e:
                log.warning("oracle.read_failed", oracle=oracle.name, error=str(e))
                continue
            await self._update_price(oracle, raw)

    async def handle_log(self, entry: dict[str, Any]) -> None:
        """Apply one ``AnswerUpdated`` log; malformed logs are dropped."""
        try:
            address, raw = decode_answer_updated(entry)
        except Exception:
            log.warning("oracle.malformed_log", entry=str(entry)[:200])
            return
        oracle = self.registry.oracle_by_address(address)
        if oracle is None:
            log.debug("oracle.unknown_address", address=address)
            return
        await self._update_price(oracle, raw)

    async def _update_price(self, oracle: Oracle, raw: int) -> None:
        if raw <= 0:
            log.debug("oracle.non_positive_price", oracle=oracle.name, raw=raw)
            return
        price = invert_price(raw, oracle.price_decimals) if oracle.is_inverse else raw
        if self._last_prices.get(oracle.pair) == price:
            return
        self._last_prices[oracle.pair] = price
        log.debug("oracle.price_updated", pair=oracle.pair, price=price)
        if not oracle.is_fiat:
            await self.price_updated.publish(oracle.base_token, oracle.quote_token, price)

    async def _refresh_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.oracle_poll_interval)
            await self.refresh_all()

    async def _subscription_loop(self) -> None:
        addresses = [oracle.address for oracle in self.registry.oracles]
        while self._running:
            try:
                async for entry in self.reader.subscribe_answers(addresses):
                    await self.handle_log(entry)
                log.warning("oracle.subscription_ended")
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("oracle.subscription_failed")
            await asyncio.sleep(self.settings.oracle_resubscribe_delay)

