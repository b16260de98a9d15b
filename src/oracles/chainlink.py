"""Chainlink aggregator access over web3: latest answers and update logs."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol

import structlog
from eth_abi import decode as abi_decode
from eth_utils import to_bytes
from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider

log = structlog.get_logger()

# keccak("AnswerUpdated(int256,uint256,uint256)")
ANSWER_UPDATED_TOPIC = "0x0559884fd3a460db3073b7fc896cc77986f16e378210ded43186175bf646fc5f"

LATEST_ANSWER_ABI = [
    {
        "inputs": [],
        "name": "latestAnswer",
        "outputs": [{"internalType": "int256", "name": "", "type": "int256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


class OracleReader(Protocol):
    """Price oracle collaborator used by the price tracker."""

    async def latest_answer(self, address: str) -> int:
        """Return the latest raw answer of the aggregator at ``address``."""
        ...

    def subscribe_answers(self, addresses: list[str]) -> AsyncIterator[dict[str, Any]]:
        """Yield raw ``AnswerUpdated`` logs emitted by ``addresses``."""
        ...


def decode_answer_updated(entry: dict[str, Any]) -> tuple[str, int]:
    """Return ``(aggregator_address, current_answer)`` from an AnswerUpdated log.

    ``current`` is the first indexed argument, i.e. ``topics[1]``.

    Raises:
        ValueError: If the log is not an AnswerUpdated event
    """
    topics = entry.get("topics") or []
    if len(topics) < 2:
        raise ValueError("AnswerUpdated log without indexed answer")
    topic0 = _hex(topics[0])
    if topic0.lower() != ANSWER_UPDATED_TOPIC:
        raise ValueError(f"unexpected log topic {topic0}")
    (answer,) = abi_decode(["int256"], to_bytes(hexstr=_hex(topics[1])))
    return str(entry["address"]).lower(), answer


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


class Web3OracleReader:
    """``OracleReader`` backed by an HTTP endpoint for reads and a websocket for logs."""

    def __init__(self, http_url: str, ws_url: str) -> None:
        self.w3 = AsyncWeb3(AsyncHTTPProvider(http_url))
        self.ws_url = ws_url

    async def latest_answer(self, address: str) -> int:
        contract = self.w3.eth.contract(
            address=self.w3.to_checksum_address(address),
            abi=LATEST_ANSWER_ABI,
        )
        return int(await contract.functions.latestAnswer().call())

    async def subscribe_answers(self, addresses: list[str]) -> AsyncIterator[dict[str, Any]]:
        async with AsyncWeb3(WebSocketProvider(self.ws_url)) as w3:
            subscription_id = await w3.eth.subscribe(
                "logs",
                {
                    "address": [w3.to_checksum_address(a) for a in addresses],
                    "topics": [ANSWER_UPDATED_TOPIC],
                },
            )
            log.info("oracle.subscribed", subscription_id=subscription_id, oracles=len(addresses))
            try:
                async for message in w3.socket.process_subscriptions():
                    yield dict(message["result"])
            finally:
                try:
                    await w3.eth.unsubscribe(subscription_id)
                except Exception:
                    log.debug("oracle.unsubscribe_failed", subscription_id=subscription_id)
