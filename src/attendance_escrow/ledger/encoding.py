"""Conversions between platform values and what the EventEscrow contract stores."""

from __future__ import annotations

from decimal import Decimal

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def hash_event_id(event_id: str) -> str:
    """``keccak256(utf8(event_id))`` as a 0x-prefixed hex string (the contract's bytes32 key)."""
    return Web3.to_hex(Web3.keccak(text=event_id))


def to_wei(amount: Decimal) -> int:
    return int(Web3.to_wei(amount, "ether"))


def from_wei(amount_wei: int) -> Decimal:
    return Decimal(Web3.from_wei(amount_wei, "ether"))


def same_address(a: str | None, b: str | None) -> bool:
    """EVM addresses compare case-insensitively (checksum casing is cosmetic)."""
    if not a or not b:
        return False
    return a.lower() == b.lower()
