"""Chainlink oracle access and the latest-price tracker."""

from src.oracles.chainlink import OracleReader, Web3OracleReader, decode_answer_updated
from src.oracles.price_tracker import PriceOracleTracker

__all__ = [
    "OracleReader",
    "PriceOracleTracker",
    "Web3OracleReader",
    "decode_answer_updated",
]
