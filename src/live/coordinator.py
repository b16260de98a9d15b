"""Liquidation coordinator: reacts to price and order events, submits profitable matches."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from enum import StrEnum
from typing import Protocol

import msgspec
import structlog

from src.core.config import LiquidatorSettings
from src.core.orders import OrderSummary
from src.core.profitability import evaluate_match, evaluate_order, is_triggered
from src.core.registry import NetworkRegistry
from src.core.types import OrderHash, RawPrice, TokenSymbol, TransactionHash, Wei
from src.execution.exchange import TradeExecutor
from src.execution.transaction_tracker import TransactionTracker
from src.oracles.price_tracker import WETH, PriceOracleTracker
from src.orders.order_cache import OrderCache

log = structlog.get_logger()


class GasPriceSource(Protocol):
    @property
    def current_gas_price(self) -> Wei: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class CoordinatorState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class PendingLiquidation(msgspec.Struct, frozen=True, kw_only=True):
    """A submitted liquidation awaiting its receipt."""

    transaction_hash: TransactionHash
    order_hash: OrderHash
    base_token: TokenSymbol
    quote_token: TokenSymbol
    fiat_profit: Decimal


class TradeCoordinator:
    """Wires the price tracker, order cache and executor together.

    Handlers are no-ops unless the coordinator is RUNNING and the order cache
    reports itself connected. Pending liquidations and the transaction tracker
    survive start/stop cycles.
    """

    def __init__(
        self,
        settings: LiquidatorSettings,
        registry: NetworkRegistry,
        gas_prices: GasPriceSource,
        price_tracker: PriceOracleTracker,
        order_cache: OrderCache,
        executor: TradeExecutor,
        transactions: TransactionTracker,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.gas_prices = gas_prices
        self.price_tracker = price_tracker
        self.order_cache = order_cache
        self.executor = executor
        self.transactions = transactions

        self.state = CoordinatorState.STOPPED
        self.pending: dict[TransactionHash, PendingLiquidation] = {}
        self._reported_unprofitable: set[OrderHash] = set()
        self._submitting: set[OrderHash] = set()

        price_tracker.price_updated.subscribe(self.on_price_updated)
        order_cache.new_order.subscribe(self.on_new_order)
        transactions.transaction_complete.subscribe(self.on_transaction_complete)

    @property
    def is_active(self) -> bool:
        return self.state is CoordinatorState.RUNNING and self.order_cache.is_connected()

    async def start(self) -> None:
        """Start every service, then replay the known prices once."""
        if self.state is not CoordinatorState.STOPPED:
            await self.stop()
        self.state = CoordinatorState.STARTING
        log.info("coordinator.starting")
        try:
            await asyncio.gather(
                self.gas_prices.start(),
                self.price_tracker.start(),
                self.order_cache.start(),
            )
        except Exception:
            log.exception("coordinator.start_failed")
            await self.stop()
            raise
        self.state = CoordinatorState.RUNNING
        log.info("coordinator.running", connected=self.order_cache.is_connected())
        await self.price_tracker.trigger_all()

    async def stop(self) -> None:
        """Stop the services; in-flight liquidations keep being tracked."""
        self.state = CoordinatorState.STOPPING
        results = await asyncio.gather(
            self.gas_prices.stop(),
            self.price_tracker.stop(),
            self.order_cache.stop(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                log.error("coordinator.service_stop_failed", error=str(result))
        self.state = CoordinatorState.STOPPED
        log.info("coordinator.stopped", pending=len(self.pending))

    # -- event handlers ---------------------------------------------------

    async def on_price_updated(
        self, base_token: TokenSymbol, quote_token: TokenSymbol, price: RawPrice
    ) -> None:
        if not self.is_active:
            return
        orders = self.order_cache.get_orders(base_token, quote_token)
        if orders:
            await self._liquidate(base_token, quote_token, price, orders)

    async def on_new_order(self, order: OrderSummary) -> None:
        if not self.is_active:
            return
        price = self.price_tracker.get_last_price(order.base_token, order.quote_token)
        if price is None:
            return
        await self._liquidate(order.base_token, order.quote_token, price, [order])

    def on_transaction_complete(self, tx_hash: TransactionHash, success: bool) -> None:
        liquidation = self.pending.pop(tx_hash, None)
        if liquidation is None:
            return
        self.order_cache.record_outcome(liquidation.order_hash, success)
        log.info(
            "coordinator.liquidation_complete" if success else "coordinator.liquidation_failed",
            tx_hash=tx_hash,
            order_hash=liquidation.order_hash,
            pair=f"{liquidation.base_token}-{liquidation.quote_token}",
            fiat_profit=str(liquidation.fiat_profit),
            profit_asset=self.settings.profit_asset,
            success=success,
        )

    # -- pipeline ---------------------------------------------------------

    def _in_flight(self) -> set[OrderHash]:
        return {liquidation.order_hash for liquidation in self.pending.values()}

    async def _liquidate(
        self,
        base_token: TokenSymbol,
        quote_token: TokenSymbol,
        price: RawPrice,
        orders: list[OrderSummary],
    ) -> None:
        if not self.settings.is_pair_allowed(base_token, quote_token):
            return
        oracle = self.registry.oracle_for_pair(base_token, quote_token)
        if oracle is None:
            return
        profit_asset = self.settings.profit_asset
        token_fiat_price = self.price_tracker.get_token_fiat_price(base_token, profit_asset)
        eth_fiat_price = self.price_tracker.get_token_fiat_price(WETH, profit_asset)
        if token_fiat_price is None or eth_fiat_price is None:
            log.debug("coordinator.missing_fiat_price", base=base_token, profit_asset=profit_asset)
            return

        gas_price = self.gas_prices.current_gas_price
        min_profit = self.settings.minimum_profit_percent
        in_flight = self._in_flight() | self._submitting

        candidates: list[OrderSummary] = []
        for order in orders:
            if order.order_hash in in_flight:
                continue
            result = evaluate_order(
                order,
                price,
                gas_price,
                eth_fiat_price,
                token_fiat_price,
                min_profit,
                self.registry,
                oracle.is_inverse,
            )
            if result.is_profitable:
                candidates.append(order)
            elif (
                order.order_hash not in self._reported_unprofitable
                and is_triggered(order, price, oracle.is_inverse)
            ):
                self._reported_unprofitable.add(order.order_hash)
                log.info(
                    "coordinator.order_not_profitable",
                    order_hash=order.order_hash,
                    pair=order.pair,
                    fiat_profit=str(result.fiat_profit),
                )
        if not candidates:
            return

        # Claimed before the first await so a concurrent pass skips them
        claimed = {order.order_hash for order in candidates}
        self._submitting |= claimed
        try:
            await self._submit_matches(
                base_token,
                quote_token,
                candidates,
                oracle.is_inverse,
                gas_price,
                eth_fiat_price,
                token_fiat_price,
            )
        finally:
            self._submitting -= claimed

    async def _submit_matches(
        self,
        base_token: TokenSymbol,
        quote_token: TokenSymbol,
        candidates: list[OrderSummary],
        is_inverse: bool,
        gas_price: int,
        eth_fiat_price: Decimal,
        token_fiat_price: Decimal,
    ) -> None:
        min_profit = self.settings.minimum_profit_percent
        matches = await self.order_cache.match_candidates(candidates)
        for order in candidates:
            match = matches.get(order.order_hash)
            if match is None or match.fill_amount <= 0:
                continue
            stop_order = self.order_cache.get_order(order.order_hash)
            if stop_order is None:
                continue
            signed_stop = stop_order.to_signed_order()
            result = evaluate_match(
                signed_stop,
                match.counter_order,
                gas_price,
                eth_fiat_price,
                token_fiat_price,
                min_profit,
                self.registry,
                is_inverse,
            )
            if not result.is_profitable:
                log.debug("coordinator.match_not_profitable", order_hash=order.order_hash)
                continue

            try:
                tx_hash = await self.executor.execute_trade(
                    signed_stop, match.counter_order, gas_price
                )
            except Exception as e:
                log.warning(
                    "coordinator.execution_failed",
                    order_hash=order.order_hash,
                    error=str(e),
                )
                continue

            self.pending[tx_hash] = PendingLiquidation(
                transaction_hash=tx_hash,
                order_hash=order.order_hash,
                base_token=base_token,
                quote_token=quote_token,
                fiat_profit=result.fiat_profit,
            )
            self.transactions.register(tx_hash)
            log.info(
                "coordinator.liquidation_submitted",
                tx_hash=tx_hash,
                order_hash=order.order_hash,
                pair=order.pair,
                fiat_profit=str(result.fiat_profit),
                profit_asset=self.settings.profit_asset,
            )
