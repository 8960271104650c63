"""
spoutrelay/__init__.py

Spout settlement relayer.

Watches the order program for BuyOrderCreated / SellOrderCreated events
and settles each one on the ledger: mint for a buy, burn then USDC payout
for a sell, every instruction gated by the holder's identity attestation.
"""

__version__ = "0.3.0"

from spoutrelay.core.address import parse_address
from spoutrelay.core.crypto import Ed25519Signer, TransactionSigner
from spoutrelay.core.exceptions import RelayerError
from spoutrelay.core.models import (
    OrderEvent,
    OrderSide,
    SettlementResult,
    SettlementState,
    SettlementStatus,
)
from spoutrelay.core.pda import AddressDeriver, find_program_address
from spoutrelay.events.decoder import FieldSchema, decode_event

__all__ = [
    # Core types
    "parse_address",
    "OrderEvent",
    "OrderSide",
    "SettlementResult",
    "SettlementState",
    "SettlementStatus",
    # Signing
    "TransactionSigner",
    "Ed25519Signer",
    # Derivation / decoding
    "AddressDeriver",
    "find_program_address",
    "FieldSchema",
    "decode_event",
    # Errors
    "RelayerError",
]
