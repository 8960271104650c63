"""
spoutrelay/ledger/sender.py

Build, sign, submit and confirm one transaction.

    submit(instructions, label, on_signed)
        1. fetch a recent blockhash (+ its last valid block height)
        2. compile and sign with the relayer identity
        3. on_signed(signature, last_valid_height), before anything is sent
        4. sendTransaction (node runs preflight simulation)
        5. poll getSignatureStatuses until the configured commitment is
           reached, the transaction errors, or the blockhash expires

Outcomes:
    confirmed                       → signature returned
    preflight rejection (has logs)  → TransactionError(logs=simulation logs)
    executed with error             → TransactionError(logs=execution logs)
    blockhash expired unconfirmed   → TransactionError(unconfirmed=True)
    RPC failure after signing       → TransactionError(unconfirmed=True)
    RPC failure before signing      → RpcError propagates unchanged

A submission is never retried here. Whoever retries an unconfirmed
transaction must first ask lookup() whether the earlier one landed.

    lookup(signature, last_valid_height) → SubmissionOutcome
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from solders.instruction import Instruction

from spoutrelay.core.crypto import TransactionSigner
from spoutrelay.core.exceptions import RpcError, TransactionError
from spoutrelay.core.models import SubmissionOutcome
from spoutrelay.ledger.rpc import COMMITMENT_LEVELS, RpcClient, SignatureStatus
from spoutrelay.ledger.transaction import build_transaction, signature_of

logger = logging.getLogger(__name__)

# (signature, last_valid_block_height)
SignedCallback = Callable[[str, int], None]


def _reached(status: Optional[str], commitment: str) -> bool:
    if status not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(status) >= COMMITMENT_LEVELS.index(commitment)


class TransactionSender:

    def __init__(
        self,
        rpc:           RpcClient,
        signer:        TransactionSigner,
        poll_interval: float = 1.0,
    ):
        self.rpc           = rpc
        self.signer        = signer
        self.poll_interval = poll_interval

    @property
    def payer(self):
        return self.signer.address

    async def submit(
        self,
        instructions: Sequence[Instruction],
        label:        str = "transaction",
        on_signed:    Optional[SignedCallback] = None,
    ) -> str:
        blockhash, last_valid_height = await self.rpc.get_latest_blockhash()
        tx = build_transaction(instructions, self.signer, blockhash)
        signature = signature_of(tx)
        if on_signed is not None:
            on_signed(signature, last_valid_height)

        try:
            await self.rpc.send_transaction(tx)
        except RpcError as exc:
            logs = exc.data.get("logs")
            if logs is None:
                raise TransactionError(
                    f"{label} submission outcome unknown: {exc.message}",
                    signature=signature,
                    details={"last_valid": last_valid_height},
                    unconfirmed=True,
                ) from exc
            raise TransactionError(
                f"{label} rejected in preflight: {exc.message}",
                signature=signature,
                logs=logs,
                details={"err": exc.data.get("err")},
            ) from exc

        await self.confirm(signature, last_valid_height, label)
        logger.info("%s confirmed", label, extra={"tx": signature})
        return signature

    async def confirm(self, signature: str, last_valid_height: int, label: str = "transaction") -> None:
        while True:
            try:
                (status,) = await self.rpc.get_signature_statuses([signature])
                if status is not None:
                    if status.err is not None:
                        raise TransactionError(
                            f"{label} failed on-chain",
                            signature=signature,
                            logs=await self._logs_for(signature),
                            details={"err": str(status.err)},
                        )
                    if _reached(status.confirmation_status, self.rpc.commitment):
                        return
                height = await self.rpc.get_block_height()
            except RpcError as exc:
                raise TransactionError(
                    f"{label} confirmation interrupted: {exc.message}",
                    signature=signature,
                    details={"last_valid": last_valid_height},
                    unconfirmed=True,
                ) from exc

            if height > last_valid_height:
                raise TransactionError(
                    f"{label} expired before confirmation",
                    signature=signature,
                    details={"block_height": height, "last_valid": last_valid_height},
                    unconfirmed=True,
                )
            await asyncio.sleep(self.poll_interval)

    async def lookup(self, signature: str, last_valid_height: int) -> SubmissionOutcome:
        """
        Classify an earlier submission from the ledger's own record.

        Searches transaction history, so a signature that landed long ago is
        still found. Raises RpcError when the node cannot answer.
        """
        (status,) = await self.rpc.get_signature_statuses([signature], search_history=True)
        outcome = self._classify(status)
        if outcome is not None:
            return outcome
        if await self.rpc.get_block_height() > last_valid_height:
            return SubmissionOutcome.DROPPED
        return SubmissionOutcome.IN_FLIGHT

    def _classify(self, status: Optional[SignatureStatus]) -> Optional[SubmissionOutcome]:
        if status is None:
            return None
        if status.err is not None:
            return SubmissionOutcome.FAILED
        if _reached(status.confirmation_status, self.rpc.commitment):
            return SubmissionOutcome.LANDED
        # Seen but not yet at the configured commitment
        return SubmissionOutcome.IN_FLIGHT

    async def _logs_for(self, signature: str) -> List[str]:
        try:
            tx = await self.rpc.get_transaction(signature)
        except RpcError as exc:
            logger.warning("Could not fetch logs for failed transaction %s: %s", signature, exc)
            return []
        return list(tx.logs) if tx is not None else []
