"""Tests for stop-limit profitability math."""

from decimal import Decimal

import pytest
from conftest import DAI, E18, USDC, WETH, make_signed_order, make_summary

from src.core.orders import OrderType
from src.core.profitability import (
    NOT_PROFITABLE,
    estimate_fees_fiat,
    evaluate_match,
    evaluate_order,
    invert_price,
    is_triggered,
    matched_fill_amounts,
    resolve_match_pair,
)

GAS_PRICE = 10**10  # 10 gwei
ETH_USD = Decimal(2000)
DAI_USD = Decimal(1)
PRICE = 5 * 10**14  # 0.0005 WETH per DAI


class TestInvertPrice:
    def test_round_trip_is_exact_for_exact_inverses(self) -> None:
        assert invert_price(5 * 10**14) == 2 * 10**21
        assert invert_price(invert_price(5 * 10**14)) == 5 * 10**14

    def test_result_is_floored(self) -> None:
        assert invert_price(3 * E18) == 333333333333333333

    def test_rejects_non_positive_price(self) -> None:
        with pytest.raises(ValueError):
            invert_price(0)


class TestIsTriggered:
    def test_inclusive_bounds(self) -> None:
        order = make_summary(min_price=100, max_price=200)
        assert is_triggered(order, 100)
        assert is_triggered(order, 200)
        assert not is_triggered(order, 99)
        assert not is_triggered(order, 201)

    def test_inverse_price_is_compared_in_native_quote(self) -> None:
        order = make_summary(min_price=4 * 10**14, max_price=6 * 10**14)
        # 2000 USDC per WETH, i.e. 0.0005 WETH per USDC on the oracle
        assert is_triggered(order, 2 * 10**21, is_inverse=True)
        assert not is_triggered(order, 2 * 10**21)


class TestEstimateFees:
    def test_protocol_fee_and_gas_cost(self) -> None:
        protocol_fee, gas_cost = estimate_fees_fiat(GAS_PRICE, ETH_USD)
        assert protocol_fee == Decimal(6)
        assert gas_cost == Decimal("7.2")


class TestEvaluateOrder:
    def test_profitable_sell(self, registry) -> None:
        order = make_summary(order_type=OrderType.SELL)
        result = evaluate_order(
            order, PRICE, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry
        )

        assert result.is_profitable
        assert result.asset_profit == Decimal(100)
        assert result.fiat_profit == Decimal("86.8")

    def test_profitable_buy_is_valued_in_eth(self, registry) -> None:
        order = make_summary(
            order_type=OrderType.BUY,
            maker_amount=6 * E18 // 10,
            taker_amount=1000 * E18,
        )
        result = evaluate_order(
            order, PRICE, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry
        )

        assert result.is_profitable
        assert result.asset_profit == Decimal("0.1")
        assert result.fiat_profit == Decimal("186.8")

    def test_out_of_range_price_is_not_profitable(self, registry) -> None:
        order = make_summary()
        result = evaluate_order(
            order, 7 * 10**14, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry
        )
        assert result == NOT_PROFITABLE

    def test_taker_fee_reduces_profit(self, registry) -> None:
        order = make_summary(taker_fee=10 * E18)
        result = evaluate_order(
            order, PRICE, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry
        )
        assert result.asset_profit == Decimal(90)
        assert result.fiat_profit == Decimal("76.8")

    def test_minimum_margin_is_enforced(self, registry) -> None:
        order = make_summary()
        result = evaluate_order(
            order, PRICE, GAS_PRICE, ETH_USD, DAI_USD, Decimal(90), registry
        )
        assert result.fiat_profit == Decimal("86.8")
        assert not result.is_profitable

    def test_fees_exceeding_profit(self, registry) -> None:
        result = evaluate_order(
            make_summary(), PRICE, 10**12, ETH_USD, DAI_USD, Decimal(0), registry
        )
        assert result.fiat_profit < 0
        assert not result.is_profitable

    def test_unknown_tokens_are_not_profitable(self, registry) -> None:
        order = make_summary(base_token="XYZ")
        result = evaluate_order(
            order, PRICE, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry
        )
        assert result == NOT_PROFITABLE


class TestMatching:
    def test_resolves_sell_pair_from_counter_assets(self, registry) -> None:
        counter = make_signed_order(maker_token=WETH, taker_token=DAI)
        base, quote, order_type = resolve_match_pair(counter, registry)
        assert (base.symbol, quote.symbol, order_type) == ("DAI", "WETH", OrderType.SELL)

    def test_resolves_buy_pair_from_counter_assets(self, registry) -> None:
        counter = make_signed_order(maker_token=DAI, taker_token=WETH)
        base, quote, order_type = resolve_match_pair(counter, registry)
        assert (base.symbol, quote.symbol, order_type) == ("DAI", "WETH", OrderType.BUY)

    def test_pair_without_oracle_is_unresolved(self, registry) -> None:
        counter = make_signed_order(maker_token=USDC, taker_token=DAI)
        assert resolve_match_pair(counter, registry) is None

    def test_stop_order_fully_filled(self) -> None:
        stop = make_signed_order(maker_amount=1000 * E18, taker_amount=45 * E18 // 100)
        counter = make_signed_order(
            maker_token=WETH, taker_token=DAI, maker_amount=E18 // 2, taker_amount=900 * E18
        )
        assert matched_fill_amounts(stop, counter) == (1000 * E18, 810 * E18)

    def test_counter_fill_rounds_up(self) -> None:
        stop = make_signed_order(maker_amount=10, taker_amount=1)
        counter = make_signed_order(maker_token=WETH, taker_token=DAI, maker_amount=3, taker_amount=10)
        assert matched_fill_amounts(stop, counter) == (10, 4)

    def test_counter_order_limits_the_fill(self) -> None:
        stop = make_signed_order(maker_amount=1000 * E18, taker_amount=45 * E18 // 100)
        counter = make_signed_order(
            maker_token=WETH, taker_token=DAI, maker_amount=3 * E18 // 10, taker_amount=540 * E18
        )
        realized, filled = matched_fill_amounts(stop, counter)
        assert filled == 540 * E18
        assert realized == 1000 * E18 * (3 * E18 // 10) // (45 * E18 // 100)

    def test_profitable_match(self, registry) -> None:
        stop = make_signed_order()
        counter = make_signed_order(
            maker_token=WETH, taker_token=DAI, maker_amount=E18 // 2, taker_amount=900 * E18
        )
        result = evaluate_match(stop, counter, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry)

        assert result.is_profitable
        assert result.asset_profit == Decimal(190)
        assert result.fiat_profit == Decimal("176.8")

    def test_unresolvable_match_is_not_profitable(self, registry) -> None:
        stop = make_signed_order()
        counter = make_signed_order(maker_token=USDC, taker_token=DAI)
        result = evaluate_match(stop, counter, GAS_PRICE, ETH_USD, DAI_USD, Decimal(1), registry)
        assert result == NOT_PROFITABLE
