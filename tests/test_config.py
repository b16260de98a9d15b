"""Tests for liquidator settings."""

from decimal import Decimal

import pytest
from conftest import make_settings
from pydantic import ValidationError

from src.core.config import LiquidatorSettings


class TestLiquidatorSettings:
    def test_defaults(self) -> None:
        settings = LiquidatorSettings(_env_file=None)
        assert settings.chain_id == 1
        assert settings.profit_asset == "USD"
        assert settings.minimum_profit_percent == Decimal(1)
        assert settings.order_api_url == "https://rest.bamboorelay.com/main/0x/"
        assert settings.order_ws_url == "wss://rest.bamboorelay.com/main/0x/ws"
        assert settings.gas_price_poll_interval == 60.0

    def test_environment_aliases(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CHAIN_ID", "42")
        monkeypatch.setenv("PROFIT_ASSET", "eur")
        monkeypatch.setenv("RESTRICTED_TOKEN_PAIRS", "DAI-WETH, LINK-WETH")
        monkeypatch.setenv("API_POLL_RATE_MS", "1500")
        monkeypatch.setenv("PRIVATE_KEY", "0x" + "11" * 32)

        settings = LiquidatorSettings(_env_file=None)

        assert settings.chain_id == 42
        assert settings.profit_asset == "EUR"
        assert settings.restricted_token_pairs == ["DAI-WETH", "LINK-WETH"]
        assert settings.order_poll_interval == 1.5
        assert settings.order_api_url.endswith("/kovan/0x/")
        assert "11" * 32 not in repr(settings)

    def test_rejects_unknown_profit_asset(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(profit_asset="BTC")

    def test_rejects_negative_margin_and_zero_interval(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(minimum_profit_percent=Decimal(-1))
        with pytest.raises(ValidationError):
            make_settings(oracle_poll_rate_ms=0)

    def test_custom_api_url(self) -> None:
        settings = make_settings(api_url="http://localhost:3000/0x")
        assert settings.order_api_url == "http://localhost:3000/0x/"
        assert settings.order_ws_url == "ws://localhost:3000/0x/ws"

    def test_pair_restrictions(self) -> None:
        assert make_settings().is_pair_allowed("DAI", "WETH")
        restricted = make_settings(restricted_token_pairs=["LINK-WETH"])
        assert restricted.is_pair_allowed("LINK", "WETH")
        assert not restricted.is_pair_allowed("DAI", "WETH")
