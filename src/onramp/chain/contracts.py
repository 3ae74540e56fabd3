"""Calldata encoding for the token, lending pool and perpetuals contracts.

Only the handful of functions the strategies call are encoded here. Function
selectors are derived from canonical signatures and arguments are ABI-encoded
with eth-abi, so no contract ABI JSON is needed at runtime.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from eth_abi import decode, encode
from web3 import Web3

# Perpetuals exchange uses 30-decimal fixed point for USD values
USD_DECIMALS = 30
NATIVE_DECIMALS = 18

ORDER_TYPE_MARKET_INCREASE = 2
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = b"\x00" * 32

_ORDER_ADDRESSES = "(address,address,address,address,address,address,address[])"
_ORDER_NUMBERS = "(uint256,uint256,uint256,uint256,uint256,uint256,uint256)"
_ORDER_PARAMS = f"({_ORDER_ADDRESSES},{_ORDER_NUMBERS},uint8,uint8,bool,bool,bool,bytes32)"


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units, rounding down."""
    scaled = (amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(value: int, decimals: int) -> Decimal:
    return Decimal(value) / (Decimal(10) ** decimals)


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def selector(signature: str) -> bytes:
    """First four bytes of keccak256 of the canonical function signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def encode_call(signature: str, types: list[str], args: list) -> str:
    return "0x" + (selector(signature) + encode(types, args)).hex()


def decode_uint(data: bytes) -> int:
    return int(decode(["uint256"], data)[0])


# ---------------------------------------------------------------------------
# ERC-20
# ---------------------------------------------------------------------------


def erc20_balance_of(owner: str) -> str:
    return encode_call("balanceOf(address)", ["address"], [checksum(owner)])


def erc20_allowance(owner: str, spender: str) -> str:
    return encode_call(
        "allowance(address,address)",
        ["address", "address"],
        [checksum(owner), checksum(spender)],
    )


def erc20_transfer(to: str, amount: int) -> str:
    return encode_call("transfer(address,uint256)", ["address", "uint256"], [checksum(to), amount])


def erc20_approve(spender: str, amount: int) -> str:
    return encode_call(
        "approve(address,uint256)", ["address", "uint256"], [checksum(spender), amount]
    )


# ---------------------------------------------------------------------------
# Lending pool
# ---------------------------------------------------------------------------


def lending_supply(asset: str, amount: int, on_behalf_of: str, referral_code: int = 0) -> str:
    """supply(asset, amount, onBehalfOf, referralCode) on the lending pool."""
    return encode_call(
        "supply(address,uint256,address,uint16)",
        ["address", "uint256", "address", "uint16"],
        [checksum(asset), amount, checksum(on_behalf_of), referral_code],
    )


# ---------------------------------------------------------------------------
# Perpetuals exchange router
# ---------------------------------------------------------------------------


@dataclass
class IncreaseOrder:
    """Market-increase order parameters, amounts already in base units."""

    receiver: str
    market: str
    collateral_token: str
    size_delta_usd: int  # 30 decimals
    collateral_amount: int  # collateral token base units
    acceptable_price: int  # 30 decimals minus index token decimals
    execution_fee: int  # native base units
    is_long: bool = True


def send_wnt(receiver: str, amount: int) -> str:
    return encode_call("sendWnt(address,uint256)", ["address", "uint256"], [checksum(receiver), amount])


def send_tokens(token: str, receiver: str, amount: int) -> str:
    return encode_call(
        "sendTokens(address,address,uint256)",
        ["address", "address", "uint256"],
        [checksum(token), checksum(receiver), amount],
    )


def create_order(order: IncreaseOrder) -> str:
    receiver = checksum(order.receiver)
    params = (
        (
            receiver,  # receiver
            receiver,  # cancellationReceiver
            ZERO_ADDRESS,  # callbackContract
            ZERO_ADDRESS,  # uiFeeReceiver
            checksum(order.market),
            checksum(order.collateral_token),
            [],  # swapPath
        ),
        (
            order.size_delta_usd,
            order.collateral_amount,
            0,  # triggerPrice
            order.acceptable_price,
            order.execution_fee,
            0,  # callbackGasLimit
            0,  # minOutputAmount
        ),
        ORDER_TYPE_MARKET_INCREASE,
        0,  # decreasePositionSwapType
        order.is_long,
        False,  # shouldUnwrapNativeToken
        False,  # autoCancel
        ZERO_BYTES32,
    )
    return encode_call(f"createOrder({_ORDER_PARAMS})", [_ORDER_PARAMS], [params])


def multicall(calls: list[str]) -> str:
    payloads = [bytes.fromhex(call.removeprefix("0x")) for call in calls]
    return encode_call("multicall(bytes[])", ["bytes[]"], [payloads])


def build_increase_order_calldata(order: IncreaseOrder, order_vault: str) -> str:
    """Multicall that funds the order vault and creates the order atomically."""
    return multicall(
        [
            send_wnt(order_vault, order.execution_fee),
            send_tokens(order.collateral_token, order_vault, order.collateral_amount),
            create_order(order),
        ]
    )
