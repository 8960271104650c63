"""
spoutrelay/ledger/transaction.py

Legacy (version-less) transactions signed by the relayer identity.

Message compilation (account ordering, key merging, wire layout) is
solders' Message.new_with_blockhash. Signing stays behind the
TransactionSigner interface: the signer signs the serialized message and
the signature is attached with Transaction.populate.

Every relayer transaction has exactly one signer, the fee payer. An
instruction that needs any other signature is refused before signing.
"""

from typing import Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.signature import Signature
from solders.transaction import Transaction

from spoutrelay.core.crypto import TransactionSigner
from spoutrelay.core.exceptions import TransactionError

# Maximum serialized transaction size accepted by the network
MAX_TRANSACTION_SIZE = 1232


def build_transaction(
    instructions: Sequence[Instruction],
    signer:       TransactionSigner,
    blockhash:    Hash,
) -> Transaction:
    """
    Compile instructions with signer as fee payer and sign the result.

    Raises ValueError for an empty instruction list and TransactionError
    when the transaction needs another signer or exceeds the size limit.
    """
    if not instructions:
        raise ValueError("A transaction needs at least one instruction")

    message = Message.new_with_blockhash(list(instructions), signer.address, blockhash)
    required = message.header.num_required_signatures
    if required != 1:
        foreign = [str(key) for key in message.account_keys[1:required]]
        raise TransactionError(
            "Transaction requires signers other than the relayer",
            details={"signers": ",".join(foreign)},
        )

    signature = Signature.from_bytes(signer.sign(bytes(message)))
    transaction = Transaction.populate(message, [signature])

    size = len(bytes(transaction))
    if size > MAX_TRANSACTION_SIZE:
        raise TransactionError(
            "Transaction too large",
            signature=str(signature),
            details={"size": size, "max": MAX_TRANSACTION_SIZE},
        )
    return transaction


def signature_of(transaction: Transaction) -> str:
    """Base58 fee-payer signature, the transaction's id on the ledger."""
    return str(transaction.signatures[0])
