"""0x v3 ``matchOrders`` submission and transaction status polling."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, cast

import msgspec
import structlog
from eth_account import Account
from eth_utils import to_bytes
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound
from web3.types import Nonce, TxParams, Wei

from src.core.asset_data import AssetDataError, compute_order_hash, decode_erc20_token
from src.core.config import PROTOCOL_FEE_UNIT_GAS, LiquidatorSettings
from src.core.orders import SignedOrder
from src.core.types import Address, OrderHash, TransactionHash

log = structlog.get_logger()

UNLIMITED_ALLOWANCE = 2**256 - 1
APPROVE_GAS_LIMIT = 100_000
# Ganache snapshots need an explicit limit; estimation fails there.
DEVELOPMENT_MATCH_GAS_LIMIT = 6_121_975


class ExecutionError(Exception):
    """Raised when a trade cannot be submitted."""


class OrderAlreadySubmittedError(ExecutionError):
    """One of the orders was already part of a submitted trade."""


class UnsupportedOrderError(ExecutionError):
    """The order requires a fill path this executor does not implement."""


class ContractAddresses(msgspec.Struct, frozen=True, kw_only=True):
    exchange: Address
    erc20_proxy: Address


CONTRACT_ADDRESSES: dict[int, ContractAddresses] = {
    1: ContractAddresses(
        exchange="0x61935cbdd02287b511119ddb11aeb42f1593b7ef",
        erc20_proxy="0x95e6f48254609a6ee006f7d493c8e5fb97094cef",
    ),
    1337: ContractAddresses(
        exchange="0x48bacb9266a570d521063ef5dd96e61686dbe788",
        erc20_proxy="0x1dc4c1cefef38a777b15aa20260a54e584b16c48",
    ),
}

_ORDER_COMPONENTS = [
    {"name": "makerAddress", "type": "address"},
    {"name": "takerAddress", "type": "address"},
    {"name": "feeRecipientAddress", "type": "address"},
    {"name": "senderAddress", "type": "address"},
    {"name": "makerAssetAmount", "type": "uint256"},
    {"name": "takerAssetAmount", "type": "uint256"},
    {"name": "makerFee", "type": "uint256"},
    {"name": "takerFee", "type": "uint256"},
    {"name": "expirationTimeSeconds", "type": "uint256"},
    {"name": "salt", "type": "uint256"},
    {"name": "makerAssetData", "type": "bytes"},
    {"name": "takerAssetData", "type": "bytes"},
    {"name": "makerFeeAssetData", "type": "bytes"},
    {"name": "takerFeeAssetData", "type": "bytes"},
]

EXCHANGE_ABI = [
    {
        "inputs": [
            {"components": _ORDER_COMPONENTS, "name": "leftOrder", "type": "tuple"},
            {"components": _ORDER_COMPONENTS, "name": "rightOrder", "type": "tuple"},
            {"name": "leftSignature", "type": "bytes"},
            {"name": "rightSignature", "type": "bytes"},
        ],
        "name": "matchOrders",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    }
]

ERC20_ABI = [
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class TransactionStatus(msgspec.Struct, frozen=True):
    """Result of one status poll."""

    confirmed: bool
    success: bool = False


class TradeExecutor(Protocol):
    """Execution collaborator used by the coordinator and the tracker."""

    async def execute_trade(
        self, left_order: SignedOrder, right_order: SignedOrder, gas_price: int
    ) -> TransactionHash: ...

    async def poll_status(self, tx_hash: TransactionHash) -> TransactionStatus: ...


def protocol_fee(gas_price: int) -> int:
    """Value attached to ``matchOrders``: one protocol fee per order."""
    return 2 * PROTOCOL_FEE_UNIT_GAS * gas_price


def order_tuple(order: SignedOrder) -> tuple[Any, ...]:
    """ABI tuple of a signed order, in ``Order`` struct field order."""
    return (
        AsyncWeb3.to_checksum_address(order.maker_address),
        AsyncWeb3.to_checksum_address(order.taker_address),
        AsyncWeb3.to_checksum_address(order.fee_recipient_address),
        AsyncWeb3.to_checksum_address(order.sender_address),
        order.maker_asset_amount,
        order.taker_asset_amount,
        order.maker_fee,
        order.taker_fee,
        order.expiration_time_seconds,
        order.salt,
        to_bytes(hexstr=order.maker_asset_data),
        to_bytes(hexstr=order.taker_asset_data),
        to_bytes(hexstr=order.maker_fee_asset_data),
        to_bytes(hexstr=order.taker_fee_asset_data),
    )


class Web3TradeExecutor:
    """Submits matched order pairs to the 0x v3 Exchange from a local key."""

    def __init__(
        self,
        settings: LiquidatorSettings,
        addresses: ContractAddresses | None = None,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        if settings.private_key is None:
            raise ExecutionError("PRIVATE_KEY is required to submit trades")
        addresses = addresses or CONTRACT_ADDRESSES.get(settings.chain_id)
        if addresses is None:
            raise ExecutionError(f"no 0x v3 contract addresses for chain {settings.chain_id}")

        self.settings = settings
        self.w3 = web3 or AsyncWeb3(AsyncHTTPProvider(settings.ethereum_rpc_http_url))
        self.account = Account.from_key(settings.private_key.get_secret_value())
        self.addresses = addresses
        self.exchange = self.w3.eth.contract(
            address=self.w3.to_checksum_address(addresses.exchange), abi=EXCHANGE_ABI
        )
        self._allowances: dict[Address, int] = {}
        self._submitted: set[OrderHash] = set()
        # Nonce reads and sends are serialized
        self._send_lock = asyncio.Lock()

        log.info("executor.wallet", address=self.account.address, chain_id=settings.chain_id)

    async def execute_trade(
        self, left_order: SignedOrder, right_order: SignedOrder, gas_price: int
    ) -> TransactionHash:
        """Send ``matchOrders(left, right)``.

        Raises:
            OrderAlreadySubmittedError: If either order was already submitted
            UnsupportedOrderError: If either order must go through a coordinator
            ExecutionError: If an approval or the match transaction fails to send
        """
        hashes = (compute_order_hash(left_order), compute_order_hash(right_order))
        if any(h in self._submitted for h in hashes):
            raise OrderAlreadySubmittedError(f"order already submitted: {hashes}")
        if left_order.is_coordinated or right_order.is_coordinated:
            raise UnsupportedOrderError("coordinated orders are not supported")

        self._submitted.update(hashes)
        try:
            async with self._send_lock:
                tx_hash = await self._send_match(left_order, right_order, gas_price)
        except ExecutionError:
            self._submitted.difference_update(hashes)
            raise
        except Exception as e:
            self._submitted.difference_update(hashes)
            raise ExecutionError(f"matchOrders submission failed: {e}") from e

        log.info(
            "executor.match_submitted",
            tx_hash=tx_hash.to_0x_hex(),
            left_order=hashes[0],
            right_order=hashes[1],
        )
        return tx_hash.to_0x_hex()

    async def _send_match(
        self, left_order: SignedOrder, right_order: SignedOrder, gas_price: int
    ) -> HexBytes:
        for order in (left_order, right_order):
            await self._ensure_allowance(order, gas_price)

        tx_params: TxParams = {
            "from": self.account.address,
            "nonce": await self._next_nonce(),
            "gasPrice": cast(Wei, gas_price),
            "value": cast(Wei, protocol_fee(gas_price)),
            "chainId": self.settings.chain_id,
        }
        if self.settings.chain_id == 1337:
            tx_params["gas"] = DEVELOPMENT_MATCH_GAS_LIMIT

        tx = await self.exchange.functions.matchOrders(
            order_tuple(left_order),
            order_tuple(right_order),
            to_bytes(hexstr=left_order.signature),
            to_bytes(hexstr=right_order.signature),
        ).build_transaction(tx_params)
        signed_tx = self.account.sign_transaction(tx)
        return await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)

    async def poll_status(self, tx_hash: TransactionHash) -> TransactionStatus:
        """Confirmed once mined with a receipt; ``success`` mirrors the receipt status."""
        try:
            transaction = await self.w3.eth.get_transaction(tx_hash)
            if transaction.get("blockNumber") is None:
                return TransactionStatus(confirmed=False)
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return TransactionStatus(confirmed=False)
        return TransactionStatus(confirmed=True, success=receipt["status"] == 1)

    async def _next_nonce(self) -> Nonce:
        return cast(
            Nonce, await self.w3.eth.get_transaction_count(self.account.address, "pending")
        )

    async def _ensure_allowance(self, order: SignedOrder, gas_price: int) -> None:
        if order.taker_fee <= 0:
            return
        try:
            token = decode_erc20_token(order.taker_fee_asset_data)
        except AssetDataError:
            token = decode_erc20_token(order.taker_asset_data)

        contract = self.w3.eth.contract(address=self.w3.to_checksum_address(token), abi=ERC20_ABI)
        proxy = self.w3.to_checksum_address(self.addresses.erc20_proxy)
        if token not in self._allowances:
            self._allowances[token] = await contract.functions.allowance(
                self.account.address, proxy
            ).call()
        if self._allowances[token] >= order.taker_fee:
            return

        tx = await contract.functions.approve(proxy, UNLIMITED_ALLOWANCE).build_transaction(
            {
                "from": self.account.address,
                "nonce": await self._next_nonce(),
                "gas": APPROVE_GAS_LIMIT,
                "gasPrice": cast(Wei, gas_price),
                "chainId": self.settings.chain_id,
            }
        )
        signed_tx = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        self._allowances[token] = UNLIMITED_ALLOWANCE
        log.info("executor.approval_submitted", token=token, tx_hash=tx_hash.to_0x_hex())
