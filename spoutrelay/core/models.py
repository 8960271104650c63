"""
spoutrelay/core/models.py

Relayer Data Model

OrderEvent
    One decoded BuyOrderCreated / SellOrderCreated record. Created once per
    order instruction on the ledger, immutable, and identified by the
    transaction signature plus the event's position in that transaction's
    logs. Lives only as long as one polling tick unless settlement succeeds.

SettlementIntent
    Ephemeral command derived from an OrderEvent:
        MintIntent(user, asset_amount)
        BurnPayoutIntent(user, asset_amount, usdc_amount)
    A payout is never attempted before its burn has succeeded.

SettlementState
    Journal vocabulary for the saga:
        pending → minted                      (buy)
        pending → burned → paid_out           (sell)
        pending → failed                      (definite failure)
    A step whose transaction was broadcast but never confirmed leaves the
    state where it was (pending or burned); RecoverySweep settles it from
    the signature the journal recorded at submission.

SubmissionOutcome
    What the ledger says about one recorded submission:
        landed      executed without error at the configured commitment
        failed      executed with an error
        in_flight   unknown, and its blockhash is still valid
        dropped     unknown, and its blockhash has expired

All amounts are unsigned 64-bit fixed-point integers in the mint's base
units (6 decimals for both the asset and USDC).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from solders.pubkey import Pubkey

from spoutrelay.core.address import parse_address


U64_MAX = 2 ** 64 - 1


class OrderSide(str, Enum):
    BUY  = "buy"
    SELL = "sell"

    @property
    def event_name(self) -> str:
        return EVENT_NAMES[self]


EVENT_NAMES = {
    OrderSide.BUY:  "BuyOrderCreated",
    OrderSide.SELL: "SellOrderCreated",
}
SIDE_BY_EVENT_NAME = {name: side for side, name in EVENT_NAMES.items()}


class SettlementState(str, Enum):
    PENDING  = "pending"
    MINTED   = "minted"
    BURNED   = "burned"
    PAID_OUT = "paid_out"
    FAILED   = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SettlementState.MINTED,
            SettlementState.PAID_OUT,
            SettlementState.FAILED,
        )


class SubmissionOutcome(str, Enum):
    LANDED    = "landed"
    FAILED    = "failed"
    IN_FLIGHT = "in_flight"
    DROPPED   = "dropped"


class SettlementStatus(str, Enum):
    """Outcome of one orchestrator call."""
    SETTLED   = "settled"
    SKIPPED   = "skipped"
    FAILED    = "failed"
    # Sell only: burn confirmed, payout not delivered
    PARTIAL   = "partial"


@dataclass(frozen=True)
class OrderEvent:
    side:             OrderSide
    user:             Pubkey
    ticker:           str
    usdc_amount:      int
    asset_amount:     int
    price:            int
    oracle_timestamp: int
    signature:        Optional[str] = None
    log_index:        int = 0

    @property
    def settlement_key(self) -> str:
        """Stable identity of this event: '<signature>:<log_index>'."""
        return f"{self.signature or 'unsigned'}:{self.log_index}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side":             self.side.value,
            "user":             str(self.user),
            "ticker":           self.ticker,
            "usdc_amount":      self.usdc_amount,
            "asset_amount":     self.asset_amount,
            "price":            self.price,
            "oracle_timestamp": self.oracle_timestamp,
            "signature":        self.signature,
            "log_index":        self.log_index,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "OrderEvent":
        return OrderEvent(
            side=             OrderSide(data["side"]),
            user=             parse_address(data["user"]),
            ticker=           data["ticker"],
            usdc_amount=      int(data["usdc_amount"]),
            asset_amount=     int(data["asset_amount"]),
            price=            int(data["price"]),
            oracle_timestamp= int(data["oracle_timestamp"]),
            signature=        data.get("signature"),
            log_index=        int(data.get("log_index", 0)),
        )


@dataclass(frozen=True)
class MintIntent:
    user:         Pubkey
    asset_amount: int

    kind = "mint"


@dataclass(frozen=True)
class BurnPayoutIntent:
    user:         Pubkey
    asset_amount: int
    usdc_amount:  int

    kind = "burn_payout"


SettlementIntent = Union[MintIntent, BurnPayoutIntent]


def intent_for(event: OrderEvent) -> SettlementIntent:
    """Map an order event to the settlement it requires."""
    if event.side is OrderSide.BUY:
        return MintIntent(user=event.user, asset_amount=event.asset_amount)
    return BurnPayoutIntent(
        user=         event.user,
        asset_amount= event.asset_amount,
        usdc_amount=  event.usdc_amount,
    )


@dataclass
class SettlementResult:
    """What the orchestrator did for one event."""
    settlement_key: str
    side:           OrderSide
    status:         SettlementStatus
    # phase name → confirmed transaction signature
    transactions:   Dict[str, str] = field(default_factory=dict)
    error:          Optional[str] = None
    reason:         Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is SettlementStatus.SETTLED
