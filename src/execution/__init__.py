"""Trade submission, gas pricing and transaction tracking."""

from src.execution.exchange import (
    ExecutionError,
    OrderAlreadySubmittedError,
    TradeExecutor,
    TransactionStatus,
    UnsupportedOrderError,
    Web3TradeExecutor,
)
from src.execution.gas_price import GasPriceService
from src.execution.transaction_tracker import TransactionTracker

__all__ = [
    "ExecutionError",
    "GasPriceService",
    "OrderAlreadySubmittedError",
    "TradeExecutor",
    "TransactionStatus",
    "TransactionTracker",
    "UnsupportedOrderError",
    "Web3TradeExecutor",
]
