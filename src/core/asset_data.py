"""0x v3 asset data codecs, stop-limit trigger parameters and order hashing."""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_bytes

from src.core.orders import SignedOrder

ERC20_PROXY_ID = bytes.fromhex("f47261b0")
MULTI_ASSET_PROXY_ID = bytes.fromhex("94cfcdd7")
STATIC_CALL_PROXY_ID = bytes.fromhex("c339d10a")
CHECK_STOP_LIMIT_SELECTOR = function_signature_to_4byte_selector("checkStopLimit(bytes)")

EIP712_DOMAIN_SCHEMA_HASH = keccak(
    text="EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
)
EIP712_ORDER_SCHEMA_HASH = keccak(
    text=(
        "Order(address makerAddress,address takerAddress,address feeRecipientAddress,"
        "address senderAddress,uint256 makerAssetAmount,uint256 takerAssetAmount,"
        "uint256 makerFee,uint256 takerFee,uint256 expirationTimeSeconds,uint256 salt,"
        "bytes makerAssetData,bytes takerAssetData,bytes makerFeeAssetData,"
        "bytes takerFeeAssetData)"
    )
)
EIP712_EXCHANGE_DOMAIN_NAME = "0x Protocol"
EIP712_EXCHANGE_DOMAIN_VERSION = "3.0.0"


class AssetDataError(ValueError):
    """Raised when asset data cannot be decoded as expected."""


@dataclass(frozen=True)
class StopLimitParameters:
    """Trigger parameters embedded in a stop-limit order's static call."""

    oracle: str
    min_price: int
    max_price: int


def _to_bytes(asset_data: str | bytes) -> bytes:
    if isinstance(asset_data, bytes):
        return asset_data
    try:
        return to_bytes(hexstr=asset_data)
    except ValueError as e:
        raise AssetDataError(f"invalid hex asset data: {asset_data!r}") from e


def _proxy_id(data: bytes) -> bytes:
    if len(data) < 4:
        raise AssetDataError("asset data shorter than a proxy id")
    return data[:4]


def decode_multi_asset_data(asset_data: str | bytes) -> tuple[list[int], list[bytes]]:
    """Return the ``(amounts, nested_asset_data)`` of MultiAsset data."""
    data = _to_bytes(asset_data)
    if _proxy_id(data) != MULTI_ASSET_PROXY_ID:
        raise AssetDataError("not MultiAsset data")
    try:
        amounts, nested = decode(["uint256[]", "bytes[]"], data[4:])
    except Exception as e:
        raise AssetDataError("malformed MultiAsset data") from e
    return list(amounts), list(nested)


def decode_erc20_token(asset_data: str | bytes) -> str:
    """Return the token address of ERC20 asset data.

    MultiAsset data resolves to its first nested ERC20 component, which is
    how stop-limit orders wrap their traded token.
    """
    data = _to_bytes(asset_data)
    proxy_id = _proxy_id(data)
    if proxy_id == ERC20_PROXY_ID:
        try:
            (address,) = decode(["address"], data[4:])
        except Exception as e:
            raise AssetDataError("malformed ERC20 asset data") from e
        return address.lower()
    if proxy_id == MULTI_ASSET_PROXY_ID:
        _, nested = decode_multi_asset_data(data)
        for item in nested:
            if item[:4] == ERC20_PROXY_ID:
                return decode_erc20_token(item)
    raise AssetDataError(f"no ERC20 token in asset data with proxy id 0x{proxy_id.hex()}")


def decode_stop_limit_parameters(asset_data: str | bytes) -> StopLimitParameters:
    """Decode oracle and trigger bounds from stop-limit MultiAsset data."""
    _, nested = decode_multi_asset_data(asset_data)
    if len(nested) < 2 or nested[1][:4] != STATIC_CALL_PROXY_ID:
        raise AssetDataError("MultiAsset data has no static call component")
    try:
        _target, static_call_data, _expected_hash = decode(
            ["address", "bytes", "bytes32"], nested[1][4:]
        )
        if static_call_data[:4] != CHECK_STOP_LIMIT_SELECTOR:
            raise AssetDataError("static call is not checkStopLimit")
        (stop_limit_data,) = decode(["bytes"], static_call_data[4:])
        oracle, min_price, max_price = decode(["address", "int256", "int256"], stop_limit_data)
    except AssetDataError:
        raise
    except Exception as e:
        raise AssetDataError("malformed stop-limit static call data") from e
    return StopLimitParameters(oracle=oracle.lower(), min_price=min_price, max_price=max_price)


def find_stop_limit_parameters(order: SignedOrder) -> StopLimitParameters:
    """Look for trigger parameters in the maker asset data, then the maker fee asset data."""
    try:
        return decode_stop_limit_parameters(order.maker_asset_data)
    except AssetDataError:
        return decode_stop_limit_parameters(order.maker_fee_asset_data)


def encode_erc20_asset_data(token_address: str) -> str:
    return "0x" + (ERC20_PROXY_ID + encode(["address"], [token_address])).hex()


def encode_multi_asset_data(amounts: list[int], nested_asset_data: list[str]) -> str:
    nested = [_to_bytes(item) for item in nested_asset_data]
    return "0x" + (MULTI_ASSET_PROXY_ID + encode(["uint256[]", "bytes[]"], [amounts, nested])).hex()


def encode_stop_limit_asset_data(
    target_address: str,
    oracle: str,
    min_price: int,
    max_price: int,
) -> str:
    """Build the StaticCall asset data a stop-limit order carries."""
    stop_limit_data = encode(["address", "int256", "int256"], [oracle, min_price, max_price])
    static_call_data = CHECK_STOP_LIMIT_SELECTOR + encode(["bytes"], [stop_limit_data])
    payload = encode(
        ["address", "bytes", "bytes32"],
        [target_address, static_call_data, keccak(b"")],
    )
    return "0x" + (STATIC_CALL_PROXY_ID + payload).hex()


def compute_order_hash(order: SignedOrder) -> str:
    """EIP-712 hash of a 0x v3 order."""
    domain_hash = keccak(
        encode(
            ["bytes32", "bytes32", "bytes32", "uint256", "address"],
            [
                EIP712_DOMAIN_SCHEMA_HASH,
                keccak(text=EIP712_EXCHANGE_DOMAIN_NAME),
                keccak(text=EIP712_EXCHANGE_DOMAIN_VERSION),
                order.chain_id,
                order.exchange_address,
            ],
        )
    )
    struct_hash = keccak(
        encode(
            [
                "bytes32", "address", "address", "address", "address",
                "uint256", "uint256", "uint256", "uint256", "uint256", "uint256",
                "bytes32", "bytes32", "bytes32", "bytes32",
            ],
            [
                EIP712_ORDER_SCHEMA_HASH,
                order.maker_address,
                order.taker_address,
                order.fee_recipient_address,
                order.sender_address,
                order.maker_asset_amount,
                order.taker_asset_amount,
                order.maker_fee,
                order.taker_fee,
                order.expiration_time_seconds,
                order.salt,
                keccak(_to_bytes(order.maker_asset_data)),
                keccak(_to_bytes(order.taker_asset_data)),
                keccak(_to_bytes(order.maker_fee_asset_data)),
                keccak(_to_bytes(order.taker_fee_asset_data)),
            ],
        )
    )
    return "0x" + keccak(b"\x19\x01" + domain_hash + struct_hash).hex()
