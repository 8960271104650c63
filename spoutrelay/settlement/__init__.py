"""
Spout Settlement

Turns decoded order events into ledger transactions.

Critical Invariants:
- A sell's payout is never attempted before its burn confirmed
- Payout amount equals the event's usdc_amount exactly
- A failed step is reported, never retried inside the same call

With a journal the two-phase sell becomes a saga: intent persisted first,
each signature recorded before it is sent, and unsettled events reconciled
with the ledger by RecoverySweep.
"""

from spoutrelay.settlement.journal import SettlementJournal
from spoutrelay.settlement.orchestrator import Deployment, SettlementOrchestrator
from spoutrelay.settlement.recovery import RecoverySweep

__all__ = [
    "SettlementOrchestrator",
    "Deployment",
    "SettlementJournal",
    "RecoverySweep",
]
