"""Typed runtime configuration for the stop-limit liquidator."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Gas units charged per order by the exchange protocol fee (0x v3).
PROTOCOL_FEE_UNIT_GAS = 150_000
# Estimated gas consumed by one matchOrders call.
MATCH_GAS_LIMIT = 360_000

SUPPORTED_PROFIT_ASSETS = frozenset({"USD", "AUD", "EUR", "CHF", "GBP", "JPY"})

DEFAULT_API_URLS: dict[int, str] = {
    1: "https://rest.bamboorelay.com/main/0x/",
    3: "https://rest.bamboorelay.com/ropsten/0x/",
    4: "https://rest.bamboorelay.com/rinkeby/0x/",
    42: "https://rest.bamboorelay.com/kovan/0x/",
    1337: "https://localhost.bamboorelay.com/",
}

DEFAULT_GAS_PRICE_WEI = 10_000_000_000  # 10 gwei


class LiquidatorSettings(BaseSettings):
    """Immutable liquidator configuration.

    Values come from the environment (or ``.env``) and are validated once at
    startup; components receive the instance in their constructor.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    chain_id: int = Field(default=1, alias="CHAIN_ID")
    ethereum_rpc_http_url: str = Field(default="", alias="ETHEREUM_RPC_HTTP_URL")
    ethereum_rpc_ws_url: str = Field(default="", alias="ETHEREUM_RPC_WS_URL")
    private_key: SecretStr | None = Field(default=None, alias="PRIVATE_KEY")

    gas_price_source: str = Field(
        default="https://ethgasstation.info/api/ethgasAPI.json",
        alias="GAS_PRICE_SOURCE",
    )
    ethgasstation_api_key: SecretStr | None = Field(
        default=None, alias="ETHGASSTATION_API_KEY"
    )
    gas_price_poll_rate_ms: int = Field(default=60_000, gt=0, alias="GAS_PRICE_POLL_RATE_MS")
    oracle_poll_rate_ms: int = Field(default=60_000, gt=0, alias="ORACLE_POLL_RATE_MS")
    api_poll_rate_ms: int = Field(default=60_000, gt=0, alias="API_POLL_RATE_MS")
    api_url: str | None = Field(default=None, alias="API_URL")

    restricted_token_pairs: Annotated[list[str], NoDecode] = Field(
        default_factory=list, alias="RESTRICTED_TOKEN_PAIRS"
    )
    minimum_profit_percent: Decimal = Field(
        default=Decimal(1), ge=0, alias="MINIMUM_PROFIT_PERCENT"
    )
    profit_asset: str = Field(default="USD", alias="PROFIT_ASSET")

    database_path: str = Field(default="stop_limit_orders.sqlite", alias="DATABASE_PATH")
    tokens_file: str | None = Field(default=None, alias="TOKENS_FILE")
    oracles_file: str | None = Field(default=None, alias="ORACLES_FILE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(default=True, alias="JSON_LOGS")

    # Timings without environment overrides
    transaction_poll_interval: float = 10.0
    order_ws_reconnect_delay: float = 5.0
    order_ws_ping_interval: float = 20.0
    order_ws_ping_timeout: float = 10.0
    oracle_resubscribe_delay: float = 5.0
    http_timeout_seconds: float = 10.0

    @field_validator("profit_asset")
    @classmethod
    def _check_profit_asset(cls, value: str) -> str:
        value = value.upper()
        if value not in SUPPORTED_PROFIT_ASSETS:
            msg = f"PROFIT_ASSET must be one of {sorted(SUPPORTED_PROFIT_ASSETS)}, found {value}"
            raise ValueError(msg)
        return value

    @field_validator("restricted_token_pairs", mode="before")
    @classmethod
    def _split_pairs(cls, value: object) -> object:
        if isinstance(value, str):
            return [pair.strip() for pair in value.split(",") if pair.strip()]
        return value

    @property
    def order_api_url(self) -> str:
        """Order-book REST base URL for the configured chain."""
        if self.api_url:
            return self.api_url if self.api_url.endswith("/") else f"{self.api_url}/"
        return DEFAULT_API_URLS.get(self.chain_id, DEFAULT_API_URLS[1])

    @property
    def order_ws_url(self) -> str:
        """Push channel URL derived from the REST base URL."""
        base = self.order_api_url
        if base.startswith("https://"):
            base = "wss://" + base.removeprefix("https://")
        elif base.startswith("http://"):
            base = "ws://" + base.removeprefix("http://")
        return f"{base}ws"

    @property
    def gas_price_poll_interval(self) -> float:
        return self.gas_price_poll_rate_ms / 1000

    @property
    def oracle_poll_interval(self) -> float:
        return self.oracle_poll_rate_ms / 1000

    @property
    def order_poll_interval(self) -> float:
        return self.api_poll_rate_ms / 1000

    def is_pair_allowed(self, base_token: str, quote_token: str) -> bool:
        """Return False when RESTRICTED_TOKEN_PAIRS is set and excludes the pair."""
        if not self.restricted_token_pairs:
            return True
        return f"{base_token}-{quote_token}" in self.restricted_token_pairs
