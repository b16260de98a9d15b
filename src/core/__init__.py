"""Core liquidator types, configuration and profitability math."""

from src.core.types import Address, OrderHash, PairKey, RawPrice, TokenSymbol, pair_key, split_pair
from src.core.config import LiquidatorSettings
from src.core.orders import (
    FeedOrder,
    Match,
    OrderStatus,
    OrderSummary,
    OrderType,
    PersistedOrder,
    SignedOrder,
)
from src.core.asset_data import (
    AssetDataError,
    StopLimitParameters,
    compute_order_hash,
    find_stop_limit_parameters,
)
from src.core.registry import NetworkRegistry, Oracle, Token
from src.core.events import EventChannel
from src.core.profitability import (
    ProfitResult,
    evaluate_match,
    evaluate_order,
    invert_price,
    is_triggered,
)

__all__ = [
    # Types
    "Address",
    "OrderHash",
    "PairKey",
    "RawPrice",
    "TokenSymbol",
    "pair_key",
    "split_pair",
    # Configuration
    "LiquidatorSettings",
    # Orders
    "FeedOrder",
    "Match",
    "OrderStatus",
    "OrderSummary",
    "OrderType",
    "PersistedOrder",
    "SignedOrder",
    # Asset data
    "AssetDataError",
    "StopLimitParameters",
    "compute_order_hash",
    "find_stop_limit_parameters",
    # Registry
    "NetworkRegistry",
    "Oracle",
    "Token",
    # Events
    "EventChannel",
    # Profitability
    "ProfitResult",
    "evaluate_match",
    "evaluate_order",
    "invert_price",
    "is_triggered",
]
