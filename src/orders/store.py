"""Persistent storage for stop-limit orders.

The cache only needs CRUD by order hash plus pair/all scans, captured by the
``OrderStore`` protocol. ``SqliteOrderStore`` is the production backend; its
calls are synchronous, so a cache mutation never interleaves with another
coroutine.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Protocol

import structlog

from src.core.orders import OrderStatus, OrderType, PersistedOrder
from src.core.types import OrderHash

log = structlog.get_logger()

# uint256 values do not fit sqlite INTEGER, so amounts are stored as text.
_COLUMNS: tuple[tuple[str, str], ...] = (
    ("order_hash", "TEXT PRIMARY KEY"),
    ("chain_id", "INTEGER NOT NULL"),
    ("maker_address", "TEXT NOT NULL"),
    ("taker_address", "TEXT NOT NULL"),
    ("fee_recipient_address", "TEXT NOT NULL"),
    ("sender_address", "TEXT NOT NULL"),
    ("exchange_address", "TEXT NOT NULL"),
    ("maker_asset_amount", "TEXT NOT NULL"),
    ("taker_asset_amount", "TEXT NOT NULL"),
    ("maker_fee", "TEXT NOT NULL"),
    ("taker_fee", "TEXT NOT NULL"),
    ("expiration_time_seconds", "INTEGER NOT NULL"),
    ("salt", "TEXT NOT NULL"),
    ("maker_asset_data", "TEXT NOT NULL"),
    ("taker_asset_data", "TEXT NOT NULL"),
    ("maker_fee_asset_data", "TEXT NOT NULL"),
    ("taker_fee_asset_data", "TEXT NOT NULL"),
    ("signature", "TEXT NOT NULL"),
    ("base_token", "TEXT NOT NULL"),
    ("quote_token", "TEXT NOT NULL"),
    ("order_type", "TEXT NOT NULL"),
    ("order_price", "TEXT NOT NULL"),
    ("min_price", "TEXT NOT NULL"),
    ("max_price", "TEXT NOT NULL"),
    ("oracle_address", "TEXT NOT NULL"),
    ("status", "INTEGER NOT NULL"),
)
_COLUMN_NAMES = tuple(name for name, _ in _COLUMNS)
_INT_TEXT_COLUMNS = frozenset(
    {"maker_asset_amount", "taker_asset_amount", "maker_fee", "taker_fee", "salt",
     "min_price", "max_price"}
)


class OrderStore(Protocol):
    """Storage collaborator owned by the order cache."""

    def create(self, order: PersistedOrder) -> PersistedOrder: ...

    def find(self, order_hash: OrderHash) -> PersistedOrder | None: ...

    def update(self, order: PersistedOrder) -> PersistedOrder: ...

    def delete(self, order_hash: OrderHash) -> bool: ...

    def find_for_pair(
        self,
        base_token: str,
        quote_token: str,
        status: OrderStatus = OrderStatus.OPEN,
    ) -> list[PersistedOrder]: ...

    def find_all(self) -> list[PersistedOrder]: ...


def _to_row(order: PersistedOrder) -> tuple[object, ...]:
    values: list[object] = []
    for name in _COLUMN_NAMES:
        value = getattr(order, name)
        if name in _INT_TEXT_COLUMNS or name == "order_price":
            value = str(value)
        elif name == "order_type":
            value = value.value
        elif name == "status":
            value = int(value)
        values.append(value)
    return tuple(values)


def _from_row(row: sqlite3.Row) -> PersistedOrder:
    fields: dict[str, object] = {}
    for name in _COLUMN_NAMES:
        value = row[name]
        if name in _INT_TEXT_COLUMNS:
            value = int(value)
        elif name == "order_price":
            value = Decimal(value)
        elif name == "order_type":
            value = OrderType(value)
        elif name == "status":
            value = OrderStatus(value)
        fields[name] = value
    return PersistedOrder(**fields)  # type: ignore[arg-type]


class SqliteOrderStore:
    """``OrderStore`` backed by a sqlite3 database file."""

    TABLE = "stop_limit_orders"

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path)
        self._conn.row_factory = sqlite3.Row
        columns = ", ".join(f"{name} {kind}" for name, kind in _COLUMNS)
        self._conn.execute(f"CREATE TABLE IF NOT EXISTS {self.TABLE} ({columns})")
        self._conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{self.TABLE}_pair "
            f"ON {self.TABLE} (base_token, quote_token, status)"
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def create(self, order: PersistedOrder) -> PersistedOrder:
        placeholders = ", ".join("?" for _ in _COLUMN_NAMES)
        self._conn.execute(
            f"INSERT OR REPLACE INTO {self.TABLE} ({', '.join(_COLUMN_NAMES)}) "
            f"VALUES ({placeholders})",
            _to_row(order),
        )
        self._conn.commit()
        return order

    def update(self, order: PersistedOrder) -> PersistedOrder:
        return self.create(order)

    def find(self, order_hash: OrderHash) -> PersistedOrder | None:
        row = self._conn.execute(
            f"SELECT * FROM {self.TABLE} WHERE order_hash = ?", (order_hash,)
        ).fetchone()
        return _from_row(row) if row else None

    def delete(self, order_hash: OrderHash) -> bool:
        cursor = self._conn.execute(
            f"DELETE FROM {self.TABLE} WHERE order_hash = ?", (order_hash,)
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def find_for_pair(
        self,
        base_token: str,
        quote_token: str,
        status: OrderStatus = OrderStatus.OPEN,
    ) -> list[PersistedOrder]:
        rows = self._conn.execute(
            f"SELECT * FROM {self.TABLE} "
            "WHERE base_token = ? AND quote_token = ? AND status = ?",
            (base_token, quote_token, int(status)),
        ).fetchall()
        return [_from_row(row) for row in rows]

    def find_all(self) -> list[PersistedOrder]:
        rows = self._conn.execute(f"SELECT * FROM {self.TABLE}").fetchall()
        return [_from_row(row) for row in rows]
