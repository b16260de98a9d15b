"""Profitability evaluation for stop-limit liquidations.

Pure functions: no I/O and no shared state. All arithmetic is exact decimal
arithmetic in a local high-precision context; whole-unit amounts stay ``int``
and are rounded toward floor.
"""

from __future__ import annotations

import decimal
from decimal import Decimal

import msgspec

from src.core.asset_data import AssetDataError, decode_erc20_token
from src.core.config import MATCH_GAS_LIMIT, PROTOCOL_FEE_UNIT_GAS
from src.core.orders import OrderSummary, OrderType, SignedOrder
from src.core.registry import NetworkRegistry, Token

# Enough digits for uint256 amounts multiplied by 1e18-scaled prices.
PRECISION = 160
PRICE_DECIMALS = 18
ETH_DECIMALS = 18

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


class ProfitResult(msgspec.Struct, frozen=True, kw_only=True):
    """Outcome of a profitability check.

    Attributes:
        is_profitable: Net fiat profit positive and above the minimum margin
        fiat_profit: Net profit in the profit asset after fees and gas
        asset_profit: Gross profit in token units (before fees and gas)
    """

    is_profitable: bool
    fiat_profit: Decimal
    asset_profit: Decimal


NOT_PROFITABLE = ProfitResult(is_profitable=False, fiat_profit=_ZERO, asset_profit=_ZERO)


def _context() -> decimal.Context:
    return decimal.Context(prec=PRECISION, rounding=decimal.ROUND_FLOOR)


def invert_price(price: int, decimals: int = PRICE_DECIMALS) -> int:
    """Invert a fixed-point price, keeping its scale: ``floor(10^2d / price)``."""
    if price <= 0:
        raise ValueError("price must be positive")
    with decimal.localcontext(_context()):
        inverted = (Decimal(1) / Decimal(price).scaleb(-decimals)).scaleb(decimals)
        return int(inverted.to_integral_value(rounding=decimal.ROUND_FLOOR))


def is_triggered(order: OrderSummary, price: int, is_inverse: bool = False) -> bool:
    """Return True when ``price`` lies inside the order's trigger range.

    Trigger bounds are encoded against the oracle's native quote, so prices of
    inverse pairs are inverted back before the comparison.
    """
    if price <= 0:
        return False
    check_price = invert_price(price) if is_inverse else price
    return order.min_price <= check_price <= order.max_price


def _to_fiat(
    asset_profit: Decimal,
    order_type: OrderType,
    eth_fiat_price: Decimal,
    token_fiat_price: Decimal,
    is_inverse: bool,
) -> Decimal:
    if is_inverse:
        if order_type is OrderType.BUY:
            return asset_profit / eth_fiat_price * token_fiat_price
        return asset_profit * eth_fiat_price
    if order_type is OrderType.BUY:
        return asset_profit * eth_fiat_price
    return asset_profit * token_fiat_price


def estimate_fees_fiat(gas_price: int, eth_fiat_price: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``(protocol_fee, gas_cost)`` of one matched trade in fiat."""
    with decimal.localcontext(_context()):
        protocol_fee = (
            Decimal(2 * PROTOCOL_FEE_UNIT_GAS * gas_price).scaleb(-ETH_DECIMALS) * eth_fiat_price
        )
        gas_cost = Decimal(MATCH_GAS_LIMIT * gas_price).scaleb(-ETH_DECIMALS) * eth_fiat_price
    return protocol_fee, gas_cost


def _finalize(
    gross_profit: Decimal,
    order_type: OrderType,
    base: Token,
    quote: Token,
    gas_price: int,
    eth_fiat_price: Decimal,
    token_fiat_price: Decimal,
    min_profit_pct: Decimal,
    is_inverse: bool,
) -> ProfitResult:
    decimals = quote.decimals if order_type is OrderType.BUY else base.decimals
    with decimal.localcontext(_context()):
        asset_profit = gross_profit.scaleb(-decimals)
        taker_fiat_profit = _to_fiat(
            asset_profit, order_type, eth_fiat_price, token_fiat_price, is_inverse
        )
        protocol_fee, gas_cost = estimate_fees_fiat(gas_price, eth_fiat_price)
        fiat_profit = taker_fiat_profit - protocol_fee - gas_cost
        is_profitable = fiat_profit > 0 and (
            fiat_profit / taker_fiat_profit * _HUNDRED >= min_profit_pct
        )
    return ProfitResult(
        is_profitable=is_profitable,
        fiat_profit=fiat_profit,
        asset_profit=asset_profit,
    )


def evaluate_order(
    order: OrderSummary,
    price: int,
    gas_price: int,
    eth_fiat_price: Decimal,
    token_fiat_price: Decimal,
    min_profit_pct: Decimal,
    registry: NetworkRegistry,
    is_inverse: bool = False,
) -> ProfitResult:
    """Estimate the profit of taking a stop-limit order at ``price``.

    Args:
        order: Candidate stop-limit order
        price: Current pair price (quote per base, 1e18 fixed point)
        gas_price: Operating gas price in wei
        eth_fiat_price: Price of ETH in the profit asset
        token_fiat_price: Price of the pair's base token in the profit asset
        min_profit_pct: Minimum net margin, in percent of gross fiat profit
        registry: Token metadata for decimals
        is_inverse: Pair is priced by an inverse oracle

    Returns:
        ProfitResult; unprofitable with zero profit when the order is not
        triggered or its tokens are unknown
    """
    if not is_triggered(order, price, is_inverse):
        return NOT_PROFITABLE

    base = registry.token_by_symbol(order.base_token)
    quote = registry.token_by_symbol(order.quote_token)
    if base is None or quote is None:
        return NOT_PROFITABLE

    with decimal.localcontext(_context()):
        shifted_price = Decimal(price).scaleb(-PRICE_DECIMALS)
        maker = Decimal(order.maker_asset_amount)
        taker = Decimal(order.taker_asset_amount)
        if order.order_type is OrderType.BUY:
            trade_profit = maker - taker * shifted_price
        else:
            trade_profit = maker - taker / shifted_price
        gross_profit = trade_profit - Decimal(order.taker_fee)

    return _finalize(
        gross_profit,
        order.order_type,
        base,
        quote,
        gas_price,
        eth_fiat_price,
        token_fiat_price,
        min_profit_pct,
        is_inverse,
    )


def resolve_match_pair(
    counter_order: SignedOrder,
    registry: NetworkRegistry,
) -> tuple[Token, Token, OrderType] | None:
    """Work out ``(base, quote, order_type)`` from the counter order's assets.

    The counter order's taker token (A) and maker token (B) form the pair: an
    oracle for ``A-B`` makes the liquidation a SELL of base A, an oracle for
    ``B-A`` a BUY of base B.
    """
    try:
        token_a = registry.token_by_address(decode_erc20_token(counter_order.taker_asset_data))
        token_b = registry.token_by_address(decode_erc20_token(counter_order.maker_asset_data))
    except AssetDataError:
        return None
    if token_a is None or token_b is None:
        return None

    if registry.oracle_for_pair(token_a.symbol, token_b.symbol):
        return token_a, token_b, OrderType.SELL
    if registry.oracle_for_pair(token_b.symbol, token_a.symbol):
        return token_b, token_a, OrderType.BUY
    return None


def matched_fill_amounts(stop_order: SignedOrder, counter_order: SignedOrder) -> tuple[int, int]:
    """Return ``(stop_maker_realized, counter_taker_filled)`` for a match.

    When the stop-limit order wants more than the counter order offers, the
    counter order is filled completely and the stop-limit order pro rata.
    Otherwise the stop-limit order is filled completely and the counter order
    fills the ceiling of its proportional share.
    """
    if stop_order.taker_asset_amount > counter_order.maker_asset_amount:
        counter_filled = counter_order.taker_asset_amount
        stop_realized = (
            stop_order.maker_asset_amount
            * counter_order.maker_asset_amount
            // stop_order.taker_asset_amount
        )
        return stop_realized, counter_filled

    counter_filled = (
        counter_order.taker_asset_amount * stop_order.taker_asset_amount
        + counter_order.maker_asset_amount
        - 1
    ) // counter_order.maker_asset_amount
    return stop_order.maker_asset_amount, counter_filled


def evaluate_match(
    stop_order: SignedOrder,
    counter_order: SignedOrder,
    gas_price: int,
    eth_fiat_price: Decimal,
    token_fiat_price: Decimal,
    min_profit_pct: Decimal,
    registry: NetworkRegistry,
    is_inverse: bool = False,
) -> ProfitResult:
    """Estimate the realized profit of matching a stop-limit order.

    Args:
        stop_order: The triggered stop-limit order
        counter_order: Counter order returned by the matching service
        gas_price: Operating gas price in wei
        eth_fiat_price: Price of ETH in the profit asset
        token_fiat_price: Price of the pair's base token in the profit asset
        min_profit_pct: Minimum net margin, in percent of gross fiat profit
        registry: Token and oracle metadata
        is_inverse: Pair is priced by an inverse oracle

    Returns:
        ProfitResult for the realized fill; unprofitable with zero profit if
        the pair cannot be resolved or the counter order offers nothing
    """
    resolved = resolve_match_pair(counter_order, registry)
    if resolved is None or counter_order.maker_asset_amount <= 0:
        return NOT_PROFITABLE
    if stop_order.taker_asset_amount <= 0:
        return NOT_PROFITABLE
    base, quote, order_type = resolved

    stop_realized, counter_filled = matched_fill_amounts(stop_order, counter_order)
    gross_profit = Decimal(
        stop_realized - counter_filled - stop_order.taker_fee - counter_order.taker_fee
    )

    return _finalize(
        gross_profit,
        order_type,
        base,
        quote,
        gas_price,
        eth_fiat_price,
        token_fiat_price,
        min_profit_pct,
        is_inverse,
    )
