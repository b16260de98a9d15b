"""Stop-limit order book synchronization and storage."""

from src.orders.feed import FeedError, HttpMatcher, HttpOrderFeed, Matcher, OrderFeed
from src.orders.order_cache import OrderCache
from src.orders.store import OrderStore, SqliteOrderStore

__all__ = [
    "FeedError",
    "HttpMatcher",
    "HttpOrderFeed",
    "Matcher",
    "OrderCache",
    "OrderFeed",
    "OrderStore",
    "SqliteOrderStore",
]
