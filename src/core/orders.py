"""Order records: signed 0x orders, persisted stop-limit orders and summaries.

All records are immutable ``msgspec.Struct``s. Raw token amounts are integers
in the token's smallest unit; trigger prices are integers at the oracle's
fixed-point scale.
"""

from __future__ import annotations

from decimal import Decimal
from enum import IntEnum, StrEnum

import msgspec

from src.core.types import Address, OrderHash, PairKey, TokenSymbol, pair_key

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"


class OrderType(StrEnum):
    """Side of the resting order from the maker's perspective."""

    BUY = "buy"
    SELL = "sell"


class OrderStatus(IntEnum):
    """Persisted order status."""

    OPEN = 0
    FILLED = 1
    FAILED = 2


class SignedOrder(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """0x v3 order with its maker signature."""

    maker_address: Address
    taker_address: Address
    fee_recipient_address: Address
    sender_address: Address
    maker_asset_amount: int
    taker_asset_amount: int
    maker_fee: int
    taker_fee: int
    expiration_time_seconds: int
    salt: int
    maker_asset_data: str
    taker_asset_data: str
    maker_fee_asset_data: str
    taker_fee_asset_data: str
    exchange_address: Address
    chain_id: int
    signature: str

    @property
    def is_coordinated(self) -> bool:
        """Orders with a sender must be filled through the coordinator."""
        return self.sender_address.lower() not in (NULL_ADDRESS, "0x")

    def is_expired(self, now_seconds: int) -> bool:
        return self.expiration_time_seconds < now_seconds


class PersistedOrder(SignedOrder, frozen=True, kw_only=True):
    """Stop-limit order as stored by the order cache.

    Attributes:
        order_hash: Feed-assigned hash, unique and immutable
        base_token: Base symbol of the market
        quote_token: Quote symbol of the market
        order_type: BUY for bids, SELL for asks
        order_price: Limit price quoted by the feed (quote per base)
        min_price: Lower trigger bound (raw oracle value)
        max_price: Upper trigger bound (raw oracle value)
        oracle_address: Oracle the trigger is evaluated against
        status: Lifecycle status
    """

    order_hash: OrderHash
    base_token: TokenSymbol
    quote_token: TokenSymbol
    order_type: OrderType
    order_price: Decimal
    min_price: int
    max_price: int
    oracle_address: Address
    status: OrderStatus = OrderStatus.OPEN

    @property
    def pair(self) -> PairKey:
        return pair_key(self.base_token, self.quote_token)

    def to_signed_order(self) -> SignedOrder:
        """Strip the bookkeeping fields, leaving the order as signed."""
        return SignedOrder(
            **{name: getattr(self, name) for name in SignedOrder.__struct_fields__}
        )


class OrderSummary(msgspec.Struct, frozen=True, kw_only=True):
    """In-memory projection of a persisted order used for fast evaluation."""

    base_token: TokenSymbol
    quote_token: TokenSymbol
    min_price: int
    max_price: int
    order_price: Decimal
    maker_asset_amount: int
    taker_asset_amount: int
    taker_fee: int
    is_coordinated: bool
    order_hash: OrderHash
    order_type: OrderType
    expiration_time_seconds: int = 0

    @classmethod
    def from_persisted(cls, order: PersistedOrder) -> OrderSummary:
        return cls(
            base_token=order.base_token,
            quote_token=order.quote_token,
            min_price=order.min_price,
            max_price=order.max_price,
            order_price=order.order_price,
            maker_asset_amount=order.maker_asset_amount,
            taker_asset_amount=order.taker_asset_amount,
            taker_fee=order.taker_fee,
            is_coordinated=order.is_coordinated,
            order_hash=order.order_hash,
            order_type=order.order_type,
            expiration_time_seconds=order.expiration_time_seconds,
        )

    @property
    def pair(self) -> PairKey:
        return pair_key(self.base_token, self.quote_token)


class FeedOrder(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Order record as served by the order-book REST and push feeds."""

    order_hash: OrderHash
    type: str  # BID or ASK
    execution_type: str
    price: Decimal
    signed_order: SignedOrder
    remaining_base_token_amount: int | None = None
    min_price: int | None = None
    max_price: int | None = None
    oracle_address: Address | None = None
    base_token_address: Address | None = None
    quote_token_address: Address | None = None

    @property
    def order_type(self) -> OrderType:
        return OrderType.BUY if self.type.upper() == "BID" else OrderType.SELL


class Match(msgspec.Struct, frozen=True, kw_only=True):
    """Counter order proposed by the matching service."""

    order_hash: OrderHash
    counter_order: SignedOrder
    fill_amount: int


def decode_feed_order(record: object) -> FeedOrder:
    """Convert a decoded JSON record to a ``FeedOrder``.

    Raises:
        msgspec.ValidationError: If the record does not have the feed shape
    """
    return msgspec.convert(record, FeedOrder, strict=False)
