"""
spoutrelay/core/layouts.py

Borsh layouts for the order program's Anchor interface.

Anchor prefixes every instruction and event with an 8-byte discriminator:

    instruction  SHA-256("global:" + name)[:8]
    event        SHA-256("event:" + Name)[:8]

The bodies after the discriminator are plain Borsh and are described
here with borsh-construct structs.
"""

import hashlib

from borsh_construct import CStruct, I64, String, U64
from construct import Adapter, Bytes
from solders.pubkey import Pubkey


class _PubkeyAdapter(Adapter):
    """32 raw bytes on the wire, a solders Pubkey in Python."""

    def __init__(self):
        super().__init__(Bytes(32))

    def _decode(self, obj, context, path) -> Pubkey:
        return Pubkey(obj)

    def _encode(self, obj, context, path) -> bytes:
        return bytes(obj)


BorshPubkey = _PubkeyAdapter()


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def event_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"event:{name}".encode("utf-8")).digest()[:8]


# Shared by BuyOrderCreated and SellOrderCreated
ORDER_CREATED = CStruct(
    "user"             / BorshPubkey,
    "ticker"           / String,
    "usdc_amount"      / U64,
    "asset_amount"     / U64,
    "price"            / U64,
    "oracle_timestamp" / I64,
)

MINT_ARGS = CStruct(
    "recipient" / BorshPubkey,
    "amount"    / U64,
)

BURN_ARGS = CStruct(
    "amount" / U64,
)
