"""Shared fixtures and fakes for liquidator tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Any

import pytest

from src.core.asset_data import (
    encode_erc20_asset_data,
    encode_multi_asset_data,
    encode_stop_limit_asset_data,
)
from src.core.config import LiquidatorSettings
from src.core.orders import NULL_ADDRESS, OrderSummary, OrderType, PersistedOrder, SignedOrder
from src.core.registry import NetworkRegistry

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
DAI_WETH_ORACLE = "0x773616e4d11a78f511299002da57a0a94577f1f4"
STOP_LIMIT_CONTRACT = "0x1111111111111111111111111111111111111111"
MAKER = "0x2222222222222222222222222222222222222222"
EXCHANGE = "0x61935cbdd02287b511119ddb11aeb42f1593b7ef"
FAR_FUTURE = 4_102_444_800  # 2100-01-01

E18 = 10**18


def make_settings(**overrides: Any) -> LiquidatorSettings:
    values: dict[str, Any] = {
        "chain_id": 1,
        "api_url": "https://relay.test/0x/",
        "minimum_profit_percent": Decimal(1),
        "profit_asset": "USD",
        "transaction_poll_interval": 0.01,
        "order_ws_reconnect_delay": 0.01,
        "oracle_resubscribe_delay": 0.01,
    }
    values.update(overrides)
    return LiquidatorSettings(_env_file=None, **values)


def make_signed_order(
    maker_token: str = DAI,
    taker_token: str = WETH,
    maker_amount: int = 1000 * E18,
    taker_amount: int = 45 * E18 // 100,
    *,
    taker_fee: int = 0,
    sender: str = NULL_ADDRESS,
    expiration: int = FAR_FUTURE,
    salt: int = 1,
    stop_limit: tuple[str, int, int] | None = None,
) -> SignedOrder:
    """0x v3 order; ``stop_limit=(oracle, min, max)`` wraps the maker asset in MultiAsset data."""
    maker_asset_data = encode_erc20_asset_data(maker_token)
    if stop_limit is not None:
        oracle, min_price, max_price = stop_limit
        maker_asset_data = encode_multi_asset_data(
            [1, 1],
            [
                maker_asset_data,
                encode_stop_limit_asset_data(STOP_LIMIT_CONTRACT, oracle, min_price, max_price),
            ],
        )
    return SignedOrder(
        maker_address=MAKER,
        taker_address=NULL_ADDRESS,
        fee_recipient_address=NULL_ADDRESS,
        sender_address=sender,
        maker_asset_amount=maker_amount,
        taker_asset_amount=taker_amount,
        maker_fee=0,
        taker_fee=taker_fee,
        expiration_time_seconds=expiration,
        salt=salt,
        maker_asset_data=maker_asset_data,
        taker_asset_data=encode_erc20_asset_data(taker_token),
        maker_fee_asset_data="0x",
        taker_fee_asset_data=encode_erc20_asset_data(taker_token) if taker_fee else "0x",
        exchange_address=EXCHANGE,
        chain_id=1,
        signature="0x1b" + "00" * 65 + "02",
    )


def make_summary(
    order_hash: str = "0xaa",
    *,
    base_token: str = "DAI",
    quote_token: str = "WETH",
    order_type: OrderType = OrderType.SELL,
    min_price: int = 4 * 10**14,
    max_price: int = 6 * 10**14,
    maker_amount: int = 1000 * E18,
    taker_amount: int = 45 * E18 // 100,
    taker_fee: int = 0,
) -> OrderSummary:
    return OrderSummary(
        base_token=base_token,
        quote_token=quote_token,
        min_price=min_price,
        max_price=max_price,
        order_price=Decimal("0.00045"),
        maker_asset_amount=maker_amount,
        taker_asset_amount=taker_amount,
        taker_fee=taker_fee,
        is_coordinated=False,
        order_hash=order_hash,
        order_type=order_type,
        expiration_time_seconds=FAR_FUTURE,
    )


def make_persisted(
    order_hash: str = "0xaa",
    signed: SignedOrder | None = None,
    **overrides: Any,
) -> PersistedOrder:
    signed = signed or make_signed_order()
    fields: dict[str, Any] = {
        "order_hash": order_hash,
        "base_token": "DAI",
        "quote_token": "WETH",
        "order_type": OrderType.SELL,
        "order_price": Decimal("0.00045"),
        "min_price": 4 * 10**14,
        "max_price": 6 * 10**14,
        "oracle_address": DAI_WETH_ORACLE,
    }
    fields.update(overrides)
    return PersistedOrder(
        **{name: getattr(signed, name) for name in SignedOrder.__struct_fields__},
        **fields,
    )


def make_feed_record(
    order_hash: str = "0xaa",
    signed: SignedOrder | None = None,
    *,
    side: str = "ASK",
    execution_type: str = "STOP-LIMIT",
    min_price: int | None = 4 * 10**14,
    max_price: int | None = 6 * 10**14,
    **extra: Any,
) -> dict[str, Any]:
    """Feed record as served by the relay (camelCase, string amounts)."""
    signed = signed or make_signed_order()
    signed_json = {
        "makerAddress": signed.maker_address,
        "takerAddress": signed.taker_address,
        "feeRecipientAddress": signed.fee_recipient_address,
        "senderAddress": signed.sender_address,
        "makerAssetAmount": str(signed.maker_asset_amount),
        "takerAssetAmount": str(signed.taker_asset_amount),
        "makerFee": str(signed.maker_fee),
        "takerFee": str(signed.taker_fee),
        "expirationTimeSeconds": str(signed.expiration_time_seconds),
        "salt": str(signed.salt),
        "makerAssetData": signed.maker_asset_data,
        "takerAssetData": signed.taker_asset_data,
        "makerFeeAssetData": signed.maker_fee_asset_data,
        "takerFeeAssetData": signed.taker_fee_asset_data,
        "exchangeAddress": signed.exchange_address,
        "chainId": signed.chain_id,
        "signature": signed.signature,
    }
    record: dict[str, Any] = {
        "orderHash": order_hash,
        "type": side,
        "executionType": execution_type,
        "price": "0.00045",
        "remainingBaseTokenAmount": str(signed.maker_asset_amount),
        "signedOrder": signed_json,
    }
    if min_price is not None:
        record["minPrice"] = str(min_price)
    if max_price is not None:
        record["maxPrice"] = str(max_price)
    record.update(extra)
    return record


class DummyOracleReader:
    """In-memory oracle answers; ``logs`` are replayed by ``subscribe_answers``."""

    def __init__(self, answers: dict[str, int] | None = None) -> None:
        self.answers = dict(answers or {})
        self.logs: list[dict[str, Any]] = []
        self.failing: set[str] = set()

    async def latest_answer(self, address: str) -> int:
        if address in self.failing:
            raise ConnectionError("rpc unavailable")
        return self.answers[address]

    async def subscribe_answers(self, addresses: list[str]) -> AsyncIterator[dict[str, Any]]:
        for entry in self.logs:
            yield entry


@pytest.fixture
def settings() -> LiquidatorSettings:
    return make_settings()


@pytest.fixture
def registry() -> NetworkRegistry:
    return NetworkRegistry.builtin(1)
