"""Process wiring: logging, component construction and signal-driven shutdown."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

import httpx
import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3

from src.core.config import LiquidatorSettings
from src.core.registry import NetworkRegistry
from src.execution.exchange import Web3TradeExecutor
from src.execution.gas_price import GasPriceService
from src.execution.transaction_tracker import TransactionTracker
from src.live.coordinator import TradeCoordinator
from src.oracles.chainlink import Web3OracleReader
from src.oracles.price_tracker import PriceOracleTracker
from src.orders.feed import HttpMatcher, HttpOrderFeed
from src.orders.order_cache import OrderCache
from src.orders.store import SqliteOrderStore

log = structlog.get_logger()


def configure_logging(*, json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog for production use.

    Args:
        json_output: If True, output JSON logs
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class Liquidator:
    """Every long-lived component of one liquidator process."""

    coordinator: TradeCoordinator
    transactions: TransactionTracker
    store: SqliteOrderStore
    http: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.transactions.close()
        await self.http.aclose()
        self.store.close()


def build_liquidator(settings: LiquidatorSettings) -> Liquidator:
    """Construct and wire the components described by ``settings``."""
    if settings.tokens_file or settings.oracles_file:
        registry = NetworkRegistry.from_files(
            settings.chain_id, settings.tokens_file, settings.oracles_file
        )
    else:
        registry = NetworkRegistry.builtin(settings.chain_id)

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    web3 = AsyncWeb3(AsyncHTTPProvider(settings.ethereum_rpc_http_url))
    store = SqliteOrderStore(settings.database_path)

    executor = Web3TradeExecutor(settings, web3=web3)
    transactions = TransactionTracker(settings, executor)
    coordinator = TradeCoordinator(
        settings,
        registry,
        GasPriceService(settings, client=http, web3=web3),
        PriceOracleTracker(
            settings,
            registry,
            Web3OracleReader(settings.ethereum_rpc_http_url, settings.ethereum_rpc_ws_url),
        ),
        OrderCache(
            settings,
            registry,
            store,
            HttpOrderFeed(settings, client=http),
            HttpMatcher(settings, client=http),
        ),
        executor,
        transactions,
    )
    log.info(
        "liquidator.built",
        chain_id=settings.chain_id,
        api_url=settings.order_api_url,
        oracles=len(registry.oracles),
        tokens=len(registry.tokens),
        profit_asset=settings.profit_asset,
    )
    return Liquidator(coordinator=coordinator, transactions=transactions, store=store, http=http)


async def run(settings: LiquidatorSettings) -> None:
    """Run until SIGINT/SIGTERM, then stop the coordinator and release resources."""
    liquidator = build_liquidator(settings)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await liquidator.coordinator.start()
        await shutdown.wait()
        log.info("liquidator.shutdown_requested")
    finally:
        await liquidator.coordinator.stop()
        if liquidator.transactions.pending:
            log.warning("liquidator.unconfirmed_transactions", pending=liquidator.transactions.pending)
        await liquidator.aclose()
