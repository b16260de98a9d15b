"""Operating gas price, polled from an ethgasstation-style endpoint.

Sources, in order:
1. ``GAS_PRICE_SOURCE`` (``fastest`` is in tenths of a gwei)
2. On-chain RPC ``eth_gasPrice`` when a web3 instance is given
3. The previous value (10 gwei until the first successful fetch)
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import httpx
import structlog
from web3 import AsyncWeb3

from src.core.config import DEFAULT_GAS_PRICE_WEI, LiquidatorSettings
from src.core.types import Wei
from src.utils.tasks import cancel_task

log = structlog.get_logger()

# ethgasstation quotes in units of 0.1 gwei
_GAS_STATION_UNIT = Decimal(10) ** 8


class GasPriceService:
    """Keeps ``current_gas_price`` fresh on a timer."""

    def __init__(
        self,
        settings: LiquidatorSettings,
        client: httpx.AsyncClient | None = None,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        self.settings = settings
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self.web3 = web3
        self._current: Wei = DEFAULT_GAS_PRICE_WEI
        self._task: asyncio.Task[None] | None = None

    @property
    def current_gas_price(self) -> Wei:
        return self._current

    async def start(self) -> None:
        """Fetch once, then poll every ``gas_price_poll_interval`` seconds."""
        if self._task is not None:
            await self.stop()
        await self.refresh()
        self._task = asyncio.create_task(self._poll_loop(), name="gas_price_poll")

    async def stop(self) -> None:
        task, self._task = self._task, None
        await cancel_task(task)

    async def refresh(self) -> Wei:
        """Update the gas price from the first source that answers."""
        price = await self._try_gas_station()
        source = "gas_station"
        if price is None and self.web3 is not None:
            price = await self._try_rpc(self.web3)
            source = "rpc"
        if price is None:
            log.warning("gas_price.using_previous", wei=self._current)
            return self._current

        if price != self._current:
            log.debug("gas_price.updated", wei=price, source=source)
        self._current = price
        return price

    async def _try_gas_station(self) -> Wei | None:
        params = {}
        if self.settings.ethgasstation_api_key is not None:
            params["api-key"] = self.settings.ethgasstation_api_key.get_secret_value()
        try:
            response = await self.client.get(self.settings.gas_price_source, params=params)
            response.raise_for_status()
            fastest = Decimal(str(response.json()["fastest"]))
        except Exception as e:
            log.debug("gas_price.gas_station_failed", error=str(e))
            return None
        if fastest <= 0:
            return None
        return int(fastest * _GAS_STATION_UNIT)

    async def _try_rpc(self, web3: AsyncWeb3) -> Wei | None:
        try:
            return int(await web3.eth.gas_price)
        except Exception as e:
            log.debug("gas_price.rpc_failed", error=str(e))
            return None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.gas_price_poll_interval)
            await self.refresh()

    async def aclose(self) -> None:
        await self.client.aclose()
