"""Order-book feed and matching service clients (REST over httpx, push over websockets)."""

from __future__ import annotations

import time
from typing import Any, Protocol

import httpx
import msgspec
import orjson
import structlog
import websockets

from src.core.config import LiquidatorSettings
from src.core.orders import Match, SignedOrder
from src.core.types import OrderHash, TokenSymbol

log = structlog.get_logger()


class FeedError(Exception):
    """Raised when the order-book feed returns an unusable response."""


class PushConnection(Protocol):
    """Minimal websocket surface used by the order cache."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


class OrderFeed(Protocol):
    """Order-book collaborator: REST snapshot plus push channel."""

    async def fetch_book(self, base_token: TokenSymbol, quote_token: TokenSymbol) -> list[dict[str, Any]]:
        """Return every bid and ask record of the pair's stop-limit book."""
        ...

    async def connect(self) -> PushConnection:
        """Open a push connection (handshake not yet sent)."""
        ...


class Matcher(Protocol):
    """Matching service collaborator."""

    async def match(self, order_hashes: list[OrderHash]) -> dict[OrderHash, Match]: ...


class _MatchEntry(msgspec.Struct, kw_only=True, rename="camel"):
    order_hash: OrderHash
    fill_amount: int
    counter_order: dict[str, Any]


class _MatchResponse(msgspec.Struct, kw_only=True):
    matches: list[_MatchEntry] = []


def subscribe_message(chain_id: int) -> str:
    """Handshake requesting every book update of the chain."""
    return orjson.dumps(
        {
            "type": "SUBSCRIBE",
            "topic": "BOOK",
            "market": "ALL",
            "requestId": f"stop-limit-liquidator-{int(time.time() * 1000)}",
            "chainId": chain_id,
        }
    ).decode()


class HttpOrderFeed:
    """``OrderFeed`` for a Bamboo Relay style REST + websocket API."""

    def __init__(self, settings: LiquidatorSettings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.api_url = settings.order_api_url
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def fetch_book(self, base_token: TokenSymbol, quote_token: TokenSymbol) -> list[dict[str, Any]]:
        response = await self.client.get(
            f"{self.api_url}markets/{base_token}-{quote_token}/stopLimitBook"
        )
        response.raise_for_status()
        book = response.json()
        if not isinstance(book, dict):
            raise FeedError(f"unexpected book payload for {base_token}-{quote_token}")
        return [*book.get("bids", []), *book.get("asks", [])]

    async def connect(self) -> PushConnection:
        return await websockets.connect(
            self.settings.order_ws_url,
            ping_interval=self.settings.order_ws_ping_interval,
            ping_timeout=self.settings.order_ws_ping_timeout,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


class HttpMatcher:
    """``Matcher`` calling the relay's order matching endpoint."""

    def __init__(self, settings: LiquidatorSettings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.url = f"{settings.order_api_url}orders/match"
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def match(self, order_hashes: list[OrderHash]) -> dict[OrderHash, Match]:
        """Ask for counter orders.

        Raises:
            httpx.HTTPError: On transport or status errors
            msgspec.ValidationError: If the response has an unexpected shape
        """
        if not order_hashes:
            return {}
        response = await self.client.post(
            self.url,
            json={"orderHashes": order_hashes, "chainId": self.settings.chain_id},
        )
        response.raise_for_status()
        payload = msgspec.convert(response.json(), _MatchResponse, strict=False)

        matches: dict[OrderHash, Match] = {}
        for entry in payload.matches:
            signed = entry.counter_order.get("signedOrder", entry.counter_order)
            matches[entry.order_hash] = Match(
                order_hash=entry.order_hash,
                counter_order=msgspec.convert(signed, SignedOrder, strict=False),
                fill_amount=entry.fill_amount,
            )
        return matches

    async def aclose(self) -> None:
        await self.client.aclose()
