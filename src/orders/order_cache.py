"""Local, persisted cache of resting stop-limit orders.

The cache is kept in sync with the relay two ways: a REST snapshot of every
tracked pair's stop-limit book (on start, on every push reconnect and on a
timer) and the push channel's ``NEW``/``REMOVE`` deltas in between.

Store calls are synchronous, so each admit/evict block runs without another
coroutine interleaving. A snapshot fetch does suspend, so every mutation
bumps a generation counter: a reconciliation pass leaves alone any order
admitted or removed after its fetch started.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import msgspec
import orjson
import structlog

from src.core.asset_data import AssetDataError, find_stop_limit_parameters
from src.core.config import LiquidatorSettings
from src.core.events import EventChannel
from src.core.orders import (
    FeedOrder,
    Match,
    OrderStatus,
    OrderSummary,
    PersistedOrder,
    decode_feed_order,
)
from src.core.registry import NetworkRegistry, Oracle
from src.core.types import OrderHash, PairKey, TokenSymbol, pair_key, split_pair
from src.orders.feed import Matcher, OrderFeed, PushConnection, subscribe_message
from src.orders.store import OrderStore
from src.utils.tasks import cancel_task

log = structlog.get_logger()

STOP_LIMIT = "STOP-LIMIT"


class OrderCache:
    """Synchronized view of the relay's stop-limit orders.

    Events:
        new_order: ``(summary,)`` for every order admitted to the cache
        connected: ``(is_connected,)`` whenever ``is_connected()`` flips
    """

    def __init__(
        self,
        settings: LiquidatorSettings,
        registry: NetworkRegistry,
        store: OrderStore,
        feed: OrderFeed,
        matcher: Matcher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.store = store
        self.feed = feed
        self.matcher = matcher
        self.clock = clock

        self.new_order: EventChannel[OrderSummary] = EventChannel("new_order")
        self.connected: EventChannel[bool] = EventChannel("connected")

        self._orders_by_pair: dict[PairKey, dict[OrderHash, OrderSummary]] = {}
        self._orders_by_hash: dict[OrderHash, OrderSummary] = {}

        self._generation = 0
        self._admitted_at: dict[OrderHash, int] = {}
        self._removed_at: dict[OrderHash, int] = {}

        self._running = False
        self._synced = False
        self._syncing = False
        self._was_connected = False
        self._connection: PushConnection | None = None
        self._push_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._resync_task: asyncio.Task[bool] | None = None

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Load the store, open the push channel, reconcile once, start polling."""
        if self._running:
            await self.stop()
        self._running = True
        self.load_cached()
        self._push_task = asyncio.create_task(self._push_loop(), name="order_push")
        await self.reconcile()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="order_poll")
        log.info(
            "orders.started",
            pairs=len(self.tracked_pairs()),
            orders=len(self._orders_by_hash),
        )

    async def stop(self) -> None:
        """Cancel the timers and close the push channel."""
        self._running = False
        push, poll, resync = self._push_task, self._poll_task, self._resync_task
        self._push_task = self._poll_task = self._resync_task = None
        try:
            await cancel_task(poll)
            await cancel_task(resync)
        finally:
            await cancel_task(push)
            await self._close_connection()
            await self._publish_connected()
        log.info("orders.stopped")

    def is_connected(self) -> bool:
        return self._synced and self._connection is not None

    # -- queries ----------------------------------------------------------

    def tracked_pairs(self) -> list[Oracle]:
        """Non-fiat oracles whose pair is not restricted."""
        return [
            oracle
            for oracle in self.registry.tradable_oracles
            if self.settings.is_pair_allowed(oracle.base_token, oracle.quote_token)
        ]

    def get_orders(self, base_token: TokenSymbol, quote_token: TokenSymbol) -> list[OrderSummary]:
        return list(self._orders_by_pair.get(pair_key(base_token, quote_token), {}).values())

    def get_order(self, order_hash: OrderHash) -> PersistedOrder | None:
        """Full persisted order, as needed to build a transaction."""
        return self.store.find(order_hash)

    async def match_candidates(self, orders: list[OrderSummary]) -> dict[OrderHash, Match]:
        """Ask the matching service for counter orders; ``{}`` on any failure."""
        if not orders:
            return {}
        try:
            return await self.matcher.match([order.order_hash for order in orders])
        except Exception as e:
            log.warning("orders.match_failed", orders=len(orders), error=str(e))
            return {}

    def record_outcome(self, order_hash: OrderHash, success: bool) -> bool:
        """Mark the stored order FILLED or FAILED after its liquidation settles."""
        order = self.store.find(order_hash)
        if order is None:
            return False
        status = OrderStatus.FILLED if success else OrderStatus.FAILED
        self.store.update(msgspec.structs.replace(order, status=status))
        return True

    # -- validity ---------------------------------------------------------

    def build_order(
        self,
        record: FeedOrder,
        base_token: TokenSymbol,
        quote_token: TokenSymbol,
    ) -> PersistedOrder | None:
        """Persisted form of a feed record, or None when it is not a usable stop-limit order."""
        if record.execution_type != STOP_LIMIT:
            return None
        signed = record.signed_order
        if signed.chain_id != self.registry.chain_id:
            return None
        if signed.is_expired(int(self.clock())):
            return None

        if record.base_token_address or record.quote_token_address:
            base = self.registry.token_by_address(record.base_token_address)
            quote = self.registry.token_by_address(record.quote_token_address)
        else:
            base = self.registry.token_by_symbol(base_token)
            quote = self.registry.token_by_symbol(quote_token)
        if base is None or quote is None:
            return None

        oracle = self.registry.oracle_for_pair(base.symbol, quote.symbol)
        if oracle is None or oracle.is_fiat:
            return None
        if not self.settings.is_pair_allowed(base.symbol, quote.symbol):
            return None

        if record.min_price is not None and record.max_price is not None:
            min_price, max_price = record.min_price, record.max_price
            oracle_address = (record.oracle_address or oracle.address).lower()
        else:
            try:
                params = find_stop_limit_parameters(signed)
            except AssetDataError:
                return None
            min_price, max_price = params.min_price, params.max_price
            oracle_address = params.oracle
        if min_price > max_price:
            return None

        return PersistedOrder(
            **{name: getattr(signed, name) for name in signed.__struct_fields__},
            order_hash=record.order_hash,
            base_token=base.symbol,
            quote_token=quote.symbol,
            order_type=record.order_type,
            order_price=Decimal(record.price),
            min_price=min_price,
            max_price=max_price,
            oracle_address=oracle_address,
        )

    def is_valid_order(
        self,
        record: dict[str, Any] | FeedOrder,
        base_token: TokenSymbol,
        quote_token: TokenSymbol,
    ) -> bool:
        if not isinstance(record, FeedOrder):
            try:
                record = decode_feed_order(record)
            except msgspec.ValidationError:
                return False
        return self.build_order(record, base_token, quote_token) is not None

    # -- mutations --------------------------------------------------------

    def load_cached(self) -> None:
        """Rebuild the in-memory index from the store, culling expired orders."""
        self._orders_by_pair.clear()
        self._orders_by_hash.clear()
        now = int(self.clock())
        culled = 0
        for order in self.store.find_all():
            if order.is_expired(now):
                self.store.delete(order.order_hash)
                culled += 1
                continue
            self._index(OrderSummary.from_persisted(order))
        log.info("orders.loaded", orders=len(self._orders_by_hash), culled=culled)

    def _index(self, summary: OrderSummary) -> None:
        self._orders_by_pair.setdefault(summary.pair, {})[summary.order_hash] = summary
        self._orders_by_hash[summary.order_hash] = summary

    async def _admit(self, order: PersistedOrder) -> bool:
        if order.order_hash in self._orders_by_hash:
            return False
        self.store.create(order)
        summary = OrderSummary.from_persisted(order)
        self._index(summary)
        self._generation += 1
        self._admitted_at[order.order_hash] = self._generation
        log.info(
            "orders.admitted",
            order_hash=order.order_hash,
            pair=order.pair,
            order_type=order.order_type.value,
        )
        await self.new_order.publish(summary)
        return True

    def _evict(self, order_hash: OrderHash, reason: str) -> bool:
        summary = self._orders_by_hash.pop(order_hash, None)
        if summary is None:
            return False
        self._orders_by_pair.get(summary.pair, {}).pop(order_hash, None)
        self.store.delete(order_hash)
        self._generation += 1
        self._removed_at[order_hash] = self._generation
        log.info("orders.evicted", order_hash=order_hash, pair=summary.pair, reason=reason)
        return True

    # -- reconciliation ---------------------------------------------------

    async def reconcile(self) -> bool:
        """Converge every tracked pair to the feed's snapshot.

        Returns:
            True when every pair was fetched; a pass already in flight makes
            this call return False immediately
        """
        if self._syncing:
            log.debug("orders.reconcile_in_flight")
            return False
        self._syncing = True
        complete = True
        try:
            for oracle in self.tracked_pairs():
                try:
                    await self._reconcile_pair(oracle.base_token, oracle.quote_token)
                except Exception as e:
                    complete = False
                    log.warning(
                        "orders.reconcile_pair_failed",
                        pair=oracle.pair,
                        error=str(e),
                    )
            self._cull_expired()
        finally:
            self._syncing = False
            self._admitted_at.clear()
            self._removed_at.clear()

        if complete:
            self._synced = True
        log.info("orders.reconciled", complete=complete, orders=len(self._orders_by_hash))
        await self._publish_connected()
        return complete

    async def _reconcile_pair(self, base_token: TokenSymbol, quote_token: TokenSymbol) -> None:
        started_at = self._generation
        records = await self.feed.fetch_book(base_token, quote_token)

        found: set[OrderHash] = set()
        for raw in records:
            try:
                record = decode_feed_order(raw)
            except msgspec.ValidationError:
                log.debug("orders.malformed_record", pair=pair_key(base_token, quote_token))
                continue
            order = self.build_order(record, base_token, quote_token)
            if order is None:
                continue
            found.add(order.order_hash)
            if self._removed_at.get(order.order_hash, 0) > started_at:
                continue
            await self._admit(order)

        for order_hash in list(self._orders_by_pair.get(pair_key(base_token, quote_token), {})):
            if order_hash in found or self._admitted_at.get(order_hash, 0) > started_at:
                continue
            self._evict(order_hash, "missing_from_snapshot")

    def _cull_expired(self) -> None:
        now = int(self.clock())
        for summary in list(self._orders_by_hash.values()):
            if summary.expiration_time_seconds and summary.expiration_time_seconds < now:
                self._evict(summary.order_hash, "expired")

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.order_poll_interval)
            await self.reconcile()

    # -- push channel -----------------------------------------------------

    async def handle_message(self, data: str | bytes) -> None:
        """Apply one push frame of ``NEW``/``REMOVE`` actions."""
        try:
            message = orjson.loads(data)
        except orjson.JSONDecodeError:
            log.warning("orders.malformed_message", data=str(data)[:200])
            return
        if not isinstance(message, dict):
            return

        for action in message.get("actions") or []:
            try:
                base_token, quote_token = split_pair(action["market"])
                event = action.get("event") or {}
                match action.get("action"):
                    case "REMOVE":
                        order_hash = event["orderHash"]
                        if not self._evict(order_hash, "removed"):
                            # Keeps an in-flight snapshot from re-admitting it
                            self._generation += 1
                            self._removed_at[order_hash] = self._generation
                    case "NEW":
                        record = decode_feed_order(event["order"])
                        if record.order_hash in self._orders_by_hash:
                            continue
                        order = self.build_order(record, base_token, quote_token)
                        if order is not None:
                            await self._admit(order)
            except (KeyError, TypeError, ValueError, msgspec.ValidationError) as e:
                log.warning("orders.malformed_action", error=str(e))

    async def _push_loop(self) -> None:
        first = True
        while self._running:
            try:
                self._connection = await self.feed.connect()
                await self._connection.send(subscribe_message(self.settings.chain_id))
                log.info("orders.push_connected")
                if not first and (self._resync_task is None or self._resync_task.done()):
                    self._resync_task = asyncio.create_task(self.reconcile(), name="order_resync")
                first = False
                await self._publish_connected()
                while True:
                    await self.handle_message(await self._connection.recv())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("orders.push_disconnected", error=str(e))
            await self._close_connection()
            await self._publish_connected()
            if self._running:
                await asyncio.sleep(self.settings.order_ws_reconnect_delay)

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            log.debug("orders.push_close_failed", error=str(e))

    async def _publish_connected(self) -> None:
        state = self.is_connected()
        if state != self._was_connected:
            self._was_connected = state
            await self.connected.publish(state)
