"""Shared type definitions."""

from typing import TypeAlias

# Type aliases
TokenSymbol: TypeAlias = str
Address: TypeAlias = str  # lowercase 0x-prefixed hex
OrderHash: TypeAlias = str
TransactionHash: TypeAlias = str
PairKey: TypeAlias = str  # "BASE-QUOTE"
RawPrice: TypeAlias = int  # oracle fixed-point integer
Wei: TypeAlias = int


def pair_key(base_token: TokenSymbol, quote_token: TokenSymbol) -> PairKey:
    """Return the cache key for a base/quote pair."""
    return f"{base_token}-{quote_token}"


def split_pair(key: PairKey) -> tuple[TokenSymbol, TokenSymbol]:
    """Split a ``BASE-QUOTE`` key into its two symbols."""
    base, _, quote = key.partition("-")
    return base, quote
