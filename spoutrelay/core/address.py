"""
spoutrelay/core/address.py

Ledger account addresses.

Addresses are solders Pubkey values: 32 raw bytes whose text form is
base58. Configuration, RPC payloads and log lines carry the text form;
seeds and instruction accounts use the Pubkey itself.

Key contracts:
    parse_address(text)    : base58 → Pubkey, ValueError on bad input
    coerce_address(value)  : Pubkey | str | 32 bytes → Pubkey
"""

from typing import Sequence, Union

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

ADDRESS_LENGTH = 32

AddressLike = Union[Pubkey, str, bytes, bytearray, Sequence[int]]


def parse_address(text: str) -> Pubkey:
    """Decode a base58 address. Raises ValueError on malformed input."""
    if not isinstance(text, str) or not text.strip():
        raise ValueError(f"Invalid address: {text!r}")
    try:
        return Pubkey.from_string(text.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid base58 address {text!r}: {exc}") from exc


def coerce_address(value: AddressLike) -> Pubkey:
    """Accept a Pubkey, a base58 string, or 32 raw bytes."""
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, str):
        return parse_address(value)
    if isinstance(value, (bytes, bytearray, list, tuple)):
        raw = bytes(value)
        if len(raw) != ADDRESS_LENGTH:
            raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(raw)}")
        return Pubkey(raw)
    raise TypeError(f"Cannot interpret {type(value).__name__} as an address")


# ── Well-known program ids ────────────────────────────────────

SAS_PROGRAM_ID = Pubkey.from_string("22zoJMtdu4tQc2PzL74ZUT7FrwgB1Udec8DdW4yw4BdG")

__all__ = [
    "ADDRESS_LENGTH",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "Pubkey",
    "SAS_PROGRAM_ID",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "coerce_address",
    "parse_address",
]
