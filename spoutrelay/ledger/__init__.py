"""
Ledger access: RPC client, transaction assembly, instruction builders,
and submit-and-confirm.
"""

from spoutrelay.ledger.rpc import RpcClient
from spoutrelay.ledger.sender import TransactionSender
from spoutrelay.ledger.transaction import build_transaction, signature_of

__all__ = [
    "RpcClient",
    "TransactionSender",
    "build_transaction",
    "signature_of",
]
