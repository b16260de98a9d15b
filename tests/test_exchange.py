"""Tests for the 0x exchange executor."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_settings, make_signed_order
from web3.exceptions import TransactionNotFound

from src.core.asset_data import compute_order_hash
from src.execution.exchange import (
    ExecutionError,
    OrderAlreadySubmittedError,
    TransactionStatus,
    UnsupportedOrderError,
    Web3TradeExecutor,
    order_tuple,
    protocol_fee,
)

PRIVATE_KEY = "0x" + "11" * 32


@pytest.fixture
def web3() -> MagicMock:
    return MagicMock()


@pytest.fixture
def executor(web3: MagicMock) -> Web3TradeExecutor:
    return Web3TradeExecutor(make_settings(private_key=PRIVATE_KEY), web3=web3)


def test_protocol_fee_covers_both_orders() -> None:
    assert protocol_fee(10**10) == 3 * 10**15


def test_order_tuple_layout() -> None:
    order = make_signed_order()
    fields = order_tuple(order)
    assert len(fields) == 14
    assert fields[4:10] == (
        order.maker_asset_amount,
        order.taker_asset_amount,
        0,
        0,
        order.expiration_time_seconds,
        order.salt,
    )
    assert fields[13] == b""


def test_requires_private_key() -> None:
    with pytest.raises(ExecutionError):
        Web3TradeExecutor(make_settings(), web3=MagicMock())


def test_requires_known_chain() -> None:
    with pytest.raises(ExecutionError):
        Web3TradeExecutor(make_settings(private_key=PRIVATE_KEY, chain_id=5), web3=MagicMock())


@pytest.mark.asyncio
async def test_refuses_coordinated_orders(executor: Web3TradeExecutor) -> None:
    coordinated = make_signed_order(sender="0x" + "33" * 20)
    with pytest.raises(UnsupportedOrderError):
        await executor.execute_trade(make_signed_order(), coordinated, 10**10)


@pytest.mark.asyncio
async def test_refuses_already_submitted_orders(executor: Web3TradeExecutor) -> None:
    left = make_signed_order()
    executor._submitted.add(compute_order_hash(left))
    with pytest.raises(OrderAlreadySubmittedError):
        await executor.execute_trade(left, make_signed_order(salt=9), 10**10)


@pytest.mark.asyncio
async def test_poll_status_pending_and_mined(executor: Web3TradeExecutor, web3: MagicMock) -> None:
    web3.eth.get_transaction = AsyncMock(return_value={"blockNumber": None})
    assert await executor.poll_status("0xabc") == TransactionStatus(confirmed=False)

    web3.eth.get_transaction = AsyncMock(return_value={"blockNumber": 10})
    web3.eth.get_transaction_receipt = AsyncMock(return_value={"status": 0})
    assert await executor.poll_status("0xabc") == TransactionStatus(confirmed=True, success=False)

    web3.eth.get_transaction_receipt = AsyncMock(return_value={"status": 1})
    assert await executor.poll_status("0xabc") == TransactionStatus(confirmed=True, success=True)


@pytest.mark.asyncio
async def test_poll_status_unknown_transaction(executor: Web3TradeExecutor, web3: MagicMock) -> None:
    web3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("missing"))
    assert await executor.poll_status("0xabc") == TransactionStatus(confirmed=False)


@pytest.mark.asyncio
async def test_submission_marks_orders(executor: Web3TradeExecutor, web3: MagicMock) -> None:
    tx_hash = SimpleNamespace(to_0x_hex=lambda: "0xfeed")
    call = MagicMock()
    call.build_transaction = AsyncMock(return_value={"to": "0x" + "00" * 20})
    executor.exchange = MagicMock()
    executor.exchange.functions.matchOrders.return_value = call
    executor.account = MagicMock()
    web3.eth.get_transaction_count = AsyncMock(return_value=3)
    web3.eth.send_raw_transaction = AsyncMock(return_value=tx_hash)

    left, right = make_signed_order(), make_signed_order(salt=2)
    assert await executor.execute_trade(left, right, 10**10) == "0xfeed"

    params = call.build_transaction.await_args.args[0]
    assert params["value"] == protocol_fee(10**10)
    assert params["nonce"] == 3
    with pytest.raises(OrderAlreadySubmittedError):
        await executor.execute_trade(right, make_signed_order(salt=3), 10**10)


def stub_match_call(executor: Web3TradeExecutor, web3: MagicMock) -> MagicMock:
    call = MagicMock()
    call.build_transaction = AsyncMock(return_value={"to": "0x" + "00" * 20})
    executor.exchange = MagicMock()
    executor.exchange.functions.matchOrders.return_value = call
    executor.account = MagicMock()
    web3.eth.get_transaction_count = AsyncMock(return_value=3)
    return call


@pytest.mark.asyncio
async def test_concurrent_submission_of_same_order_is_refused(
    executor: Web3TradeExecutor, web3: MagicMock
) -> None:
    stub_match_call(executor, web3)
    release = asyncio.Event()

    async def slow_send(raw: bytes) -> SimpleNamespace:
        await release.wait()
        return SimpleNamespace(to_0x_hex=lambda: "0xfeed")

    web3.eth.send_raw_transaction = AsyncMock(side_effect=slow_send)
    left = make_signed_order()

    first = asyncio.create_task(executor.execute_trade(left, make_signed_order(salt=2), 10**10))
    await asyncio.sleep(0)
    with pytest.raises(OrderAlreadySubmittedError):
        await executor.execute_trade(left, make_signed_order(salt=3), 10**10)

    release.set()
    assert await first == "0xfeed"
    assert web3.eth.send_raw_transaction.await_count == 1


@pytest.mark.asyncio
async def test_failed_submission_releases_orders(executor: Web3TradeExecutor, web3: MagicMock) -> None:
    stub_match_call(executor, web3)
    web3.eth.send_raw_transaction = AsyncMock(side_effect=ValueError("nonce too low"))
    left, right = make_signed_order(), make_signed_order(salt=2)

    with pytest.raises(ExecutionError):
        await executor.execute_trade(left, right, 10**10)
    assert executor._submitted == set()

    web3.eth.send_raw_transaction = AsyncMock(return_value=SimpleNamespace(to_0x_hex=lambda: "0xfeed"))
    assert await executor.execute_trade(left, right, 10**10) == "0xfeed"
