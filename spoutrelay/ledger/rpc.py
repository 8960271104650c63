"""
spoutrelay/ledger/rpc.py

Ledger node access through solana-py's AsyncClient.

Only the methods the relayer needs are wrapped. Each wrapper unpacks the
solders response into the small records below, so watcher and sender code
never handles response objects:

    SignatureInfo       one getSignaturesForAddress item
    TransactionLogs     err + logMessages of one getTransaction result
    SignatureStatus     one getSignatureStatuses item

Signatures cross this boundary as base58 strings. Anything that is not a
successful response raises RpcError:

    transport failure / timeout / HTTP status   RpcError(method, details={cause})
    JSON-RPC error object                       RpcError(method, data=...)
    unreadable response body                    RpcError(method)

A preflight rejection of sendTransaction carries the simulation result in
RpcError.data as {"logs": [...], "err": "..."}.

No retries happen here. A failed call is the caller's to log and skip.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, List, Optional, Sequence, Tuple

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.errors import SerdeJSONError
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from spoutrelay.core.exceptions import RpcError

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL    = "https://api.devnet.solana.com"
DEFAULT_COMMITMENT = "confirmed"
COMMITMENT_LEVELS  = ("processed", "confirmed", "finalized")

_CONFIRMATION_LEVELS = (
    (TransactionConfirmationStatus.Processed, "processed"),
    (TransactionConfirmationStatus.Confirmed, "confirmed"),
    (TransactionConfirmationStatus.Finalized, "finalized"),
)


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    err:       Any = None
    slot:      int = 0


@dataclass(frozen=True)
class TransactionLogs:
    err:  Any = None
    logs: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SignatureStatus:
    # None, "processed", "confirmed" or "finalized"
    confirmation_status: Optional[str] = None
    err:                 Any = None
    slot:                int = 0


def _level(status: Optional[TransactionConfirmationStatus]) -> Optional[str]:
    for member, name in _CONFIRMATION_LEVELS:
        if status == member:
            return name
    return None


def _signature(text: Optional[str]) -> Optional[Signature]:
    return Signature.from_string(text) if text else None


def _rpc_error(method: str, exc: RPCException) -> RpcError:
    error = exc.args[0] if exc.args else None
    message = getattr(error, "message", None) or str(error or exc)
    data = {}
    simulation = getattr(error, "data", None)
    if simulation is not None and hasattr(simulation, "logs"):
        data = {
            "logs": list(simulation.logs or []),
            "err":  None if simulation.err is None else str(simulation.err),
        }
    return RpcError(message, method=method, data=data)


class RpcClient:
    """
    Thin async wrapper over one solana-py AsyncClient.

    Usage:
        async with RpcClient(url) as rpc:
            sigs = await rpc.get_signatures_for_address(program_id, limit=5)
    """

    def __init__(
        self,
        url:        str = DEFAULT_RPC_URL,
        timeout:    float = 30.0,
        commitment: str = DEFAULT_COMMITMENT,
        client:     Optional[AsyncClient] = None,
    ):
        if commitment not in COMMITMENT_LEVELS:
            raise ValueError(f"Unknown commitment level: {commitment}")
        self.url          = url
        self.commitment   = commitment
        self._commitment  = Commitment(commitment)
        self._owns_client = client is None
        self._client      = client or AsyncClient(url, commitment=self._commitment, timeout=timeout)

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()

    # ── Transport ────────────────────────────────────────────

    async def _value(self, method: str, request: Awaitable) -> Any:
        """Await one AsyncClient call and return its response value."""
        try:
            response = await request
        except RPCException as exc:
            raise _rpc_error(method, exc) from exc
        except (SolanaRpcException, httpx.HTTPError) as exc:
            cause = exc.__cause__ or exc
            raise RpcError(
                "RPC transport failure",
                method=method,
                details={"cause": f"{type(cause).__name__}: {cause}"},
            ) from exc
        except SerdeJSONError as exc:
            raise RpcError("Unreadable RPC response", method=method,
                           details={"cause": str(exc)}) from exc

        if not hasattr(response, "value"):
            raise RpcError(getattr(response, "message", None) or "RPC error", method=method)
        return response.value

    # ── Reads ────────────────────────────────────────────────

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        limit:   int = 5,
        before:  Optional[str] = None,
        until:   Optional[str] = None,
    ) -> List[SignatureInfo]:
        """Newest first."""
        value = await self._value(
            "getSignaturesForAddress",
            self._client.get_signatures_for_address(
                address,
                before=     _signature(before),
                until=      _signature(until),
                limit=      limit,
                commitment= self._commitment,
            ),
        )
        return [
            SignatureInfo(signature=str(item.signature), err=item.err, slot=item.slot)
            for item in value or []
        ]

    async def get_transaction(self, signature: str) -> Optional[TransactionLogs]:
        """Execution error and log lines, or None if the node has no record yet."""
        value = await self._value(
            "getTransaction",
            self._client.get_transaction(
                Signature.from_string(signature),
                encoding=                          "json",
                commitment=                        self._commitment,
                max_supported_transaction_version= 0,
            ),
        )
        if value is None:
            return None
        meta = value.transaction.meta
        if meta is None:
            return TransactionLogs()
        return TransactionLogs(err=meta.err, logs=list(meta.log_messages or []))

    async def get_account_info(self, address: Pubkey) -> Optional[Any]:
        """The account, or None if it does not exist."""
        return await self._value(
            "getAccountInfo",
            self._client.get_account_info(address, commitment=self._commitment),
        )

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """(blockhash, last_valid_block_height)."""
        value = await self._value(
            "getLatestBlockhash",
            self._client.get_latest_blockhash(commitment=self._commitment),
        )
        return value.blockhash, int(value.last_valid_block_height)

    async def get_signature_statuses(
        self,
        signatures:     Sequence[str],
        search_history: bool = False,
    ) -> List[Optional[SignatureStatus]]:
        """
        One entry per signature, None where the node knows nothing of it.

        search_history also consults the ledger's long-term history, not only
        the recent status cache.
        """
        value = await self._value(
            "getSignatureStatuses",
            self._client.get_signature_statuses(
                [Signature.from_string(s) for s in signatures],
                search_transaction_history=search_history,
            ),
        )
        statuses: List[Optional[SignatureStatus]] = []
        for status in value or [None] * len(signatures):
            if status is None:
                statuses.append(None)
                continue
            statuses.append(SignatureStatus(
                confirmation_status= _level(status.confirmation_status),
                err=                 status.err,
                slot=                status.slot,
            ))
        return statuses

    async def get_block_height(self) -> int:
        return int(await self._value(
            "getBlockHeight",
            self._client.get_block_height(commitment=self._commitment),
        ))

    # ── Writes ───────────────────────────────────────────────

    async def send_transaction(self, transaction: Transaction) -> str:
        """Submit a signed transaction. Returns the signature the node reports."""
        value = await self._value(
            "sendTransaction",
            self._client.send_raw_transaction(
                bytes(transaction),
                opts=TxOpts(
                    skip_confirmation=    True,
                    skip_preflight=       False,
                    preflight_commitment= self._commitment,
                ),
            ),
        )
        signature = str(value)
        logger.debug("Submitted transaction %s", signature)
        return signature
