"""Static per-network metadata: tokens and price oracles.

The built-in tables cover Ethereum mainnet. Other networks (or overrides) are
loaded from JSON files keyed by chain id, e.g.::

    {"1": [{"symbol": "WETH", "address": "0xc02a...", "decimals": 18}]}
    {"1": [{"name": "ETH / USD", "address": "0x5f4e...", "baseToken": "WETH",
            "quoteToken": "USD", "isFiat": true, "isInverse": false}]}
"""

from __future__ import annotations

from pathlib import Path

import msgspec

from src.core.types import Address, PairKey, TokenSymbol, pair_key


class Token(msgspec.Struct, frozen=True, kw_only=True):
    """ERC20 token; ``decimals`` sets the fixed-point scale of raw amounts."""

    symbol: TokenSymbol
    address: Address
    decimals: int


class Oracle(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Price source for a pair.

    Attributes:
        name: Human readable feed name
        address: Aggregator contract address
        base_token: Base symbol of the pair the price applies to
        quote_token: Quote symbol of the pair the price applies to
        is_fiat: Fiat-denominated feed (8 decimals); only used for conversion
        is_inverse: Feed reports quote-per-base inverted (base per quote)
    """

    name: str
    address: Address
    base_token: TokenSymbol
    quote_token: TokenSymbol
    is_fiat: bool = False
    is_inverse: bool = False

    @property
    def pair(self) -> PairKey:
        return pair_key(self.base_token, self.quote_token)

    @property
    def price_decimals(self) -> int:
        """Fixed-point scale of the raw answer."""
        return 8 if self.is_fiat else 18


MAINNET_TOKENS: tuple[Token, ...] = (
    Token(symbol="WETH", address="0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2", decimals=18),
    Token(symbol="DAI", address="0x6b175474e89094c44da98b954eedeac495271d0f", decimals=18),
    Token(symbol="USDC", address="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", decimals=6),
    Token(symbol="LINK", address="0x514910771af9ca656af840dff83e8264ecf986ca", decimals=18),
)

MAINNET_ORACLES: tuple[Oracle, ...] = (
    Oracle(name="ETH / USD", address="0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419",
           base_token="WETH", quote_token="USD", is_fiat=True),
    Oracle(name="EUR / USD", address="0xb49f677943bc038e9857d61e7d053caa2c1734c1",
           base_token="EUR", quote_token="USD", is_fiat=True),
    Oracle(name="GBP / USD", address="0x5c0ab2d9b5a7ed9f470386e82bb36a3613cdd4b5",
           base_token="GBP", quote_token="USD", is_fiat=True),
    Oracle(name="JPY / USD", address="0xbce206cae7f0ec07b545edde332a47c2f75bbeb3",
           base_token="JPY", quote_token="USD", is_fiat=True),
    Oracle(name="AUD / USD", address="0x77f9710e7d0a19669a13c055f62cd80d313df022",
           base_token="AUD", quote_token="USD", is_fiat=True),
    Oracle(name="CHF / USD", address="0x449d117117838ffa61263b61da6301aa2a88b13a",
           base_token="CHF", quote_token="USD", is_fiat=True),
    Oracle(name="DAI / ETH", address="0x773616e4d11a78f511299002da57a0a94577f1f4",
           base_token="DAI", quote_token="WETH"),
    Oracle(name="LINK / ETH", address="0xdc530d9457755926550b59e8eccdae7624181557",
           base_token="LINK", quote_token="WETH"),
    Oracle(name="USDC / ETH", address="0x986b5e1e1755e3c2440e960477f25201b0a8bbd4",
           base_token="WETH", quote_token="USDC", is_inverse=True),
)

BUILTIN_TOKENS: dict[int, tuple[Token, ...]] = {1: MAINNET_TOKENS}
BUILTIN_ORACLES: dict[int, tuple[Oracle, ...]] = {1: MAINNET_ORACLES}


class NetworkRegistry:
    """Token and oracle lookups for a single chain."""

    def __init__(
        self,
        chain_id: int,
        tokens: tuple[Token, ...] | list[Token],
        oracles: tuple[Oracle, ...] | list[Oracle],
    ) -> None:
        self.chain_id = chain_id
        self.tokens: tuple[Token, ...] = tuple(
            Token(symbol=t.symbol, address=t.address.lower(), decimals=t.decimals) for t in tokens
        )
        self.oracles: tuple[Oracle, ...] = tuple(
            msgspec.structs.replace(o, address=o.address.lower()) for o in oracles
        )
        self._tokens_by_address = {t.address: t for t in self.tokens}
        self._tokens_by_symbol = {t.symbol: t for t in self.tokens}
        self._oracles_by_pair = {o.pair: o for o in self.oracles}
        self._oracles_by_address = {o.address: o for o in self.oracles}

    @classmethod
    def builtin(cls, chain_id: int) -> NetworkRegistry:
        """Registry from the built-in tables (empty for unknown chains)."""
        return cls(chain_id, BUILTIN_TOKENS.get(chain_id, ()), BUILTIN_ORACLES.get(chain_id, ()))

    @classmethod
    def from_files(
        cls,
        chain_id: int,
        tokens_file: str | Path | None = None,
        oracles_file: str | Path | None = None,
    ) -> NetworkRegistry:
        """Load tables from JSON files, falling back to built-ins per table."""
        tokens: tuple[Token, ...] | list[Token] = BUILTIN_TOKENS.get(chain_id, ())
        oracles: tuple[Oracle, ...] | list[Oracle] = BUILTIN_ORACLES.get(chain_id, ())
        if tokens_file:
            by_chain = msgspec.json.decode(Path(tokens_file).read_bytes(), type=dict[str, list[Token]])
            tokens = by_chain.get(str(chain_id), [])
        if oracles_file:
            by_chain = msgspec.json.decode(Path(oracles_file).read_bytes(), type=dict[str, list[Oracle]])
            oracles = by_chain.get(str(chain_id), [])
        return cls(chain_id, tokens, oracles)

    def token_by_address(self, address: str | None) -> Token | None:
        if not address:
            return None
        return self._tokens_by_address.get(address.lower())

    def token_by_symbol(self, symbol: str) -> Token | None:
        return self._tokens_by_symbol.get(symbol)

    def oracle_for_pair(self, base_token: str, quote_token: str) -> Oracle | None:
        return self._oracles_by_pair.get(pair_key(base_token, quote_token))

    def oracle_by_address(self, address: str) -> Oracle | None:
        return self._oracles_by_address.get(address.lower())

    @property
    def tradable_oracles(self) -> tuple[Oracle, ...]:
        """Oracles that drive liquidation decisions (non-fiat)."""
        return tuple(o for o in self.oracles if not o.is_fiat)
