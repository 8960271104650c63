"""
spoutrelay/settlement/recovery.py

Reconcile unsettled journal entries with the ledger.

Every mint / burn / payout signature is journalled before it is sent, so
after a crash, an expiry or an RPC failure the ledger can say whether the
transaction landed. Nothing is submitted again unless every earlier
submission of that step provably did not land: unknown to the node
(history included) and past its blockhash's last valid block height.

    state     recorded step outcome          action
    pending   none recorded                  resume the settlement
              landed                         record minted / burned (sell → payout)
              failed on-chain                record failed
              in flight                      leave for the next sweep
              dropped                        resume the settlement
    burned    payout landed                  record paid_out
              payout in flight               leave for the next sweep
              none / failed / dropped        submit the payout
    failed    landed                         record minted / burned (sell → payout)
              in flight                      leave for the next sweep
              failed / dropped               record failed, closing the check

Runs once at relayer startup and on demand from the CLI.
"""

import logging
from typing import Dict, List, Optional, Tuple

from spoutrelay.core.exceptions import RpcError
from spoutrelay.core.models import (
    OrderEvent,
    OrderSide,
    SettlementResult,
    SettlementState,
    SettlementStatus,
    SubmissionOutcome,
)
from spoutrelay.settlement.journal import SettlementJournal
from spoutrelay.settlement.orchestrator import SettlementOrchestrator

logger = logging.getLogger(__name__)


def _first_phase(event: OrderEvent) -> str:
    return "mint" if event.side is OrderSide.BUY else "burn"


class RecoverySweep:

    def __init__(self, orchestrator: SettlementOrchestrator, journal: SettlementJournal):
        self.orchestrator = orchestrator
        self.journal      = journal

    async def run(self) -> List[SettlementResult]:
        unsettled = self.journal.unsettled()
        if not unsettled:
            logger.info("Recovery sweep: nothing to reconcile")
            return []

        logger.warning("Recovery sweep: %d unsettled event(s)", len(unsettled))
        results = []
        for event in unsettled:
            try:
                results.append(await self._reconcile(event))
            except RpcError as exc:
                logger.error("Recovery lookup failed, left for next sweep: %s", exc,
                             extra=self._extra(event))
                results.append(SettlementResult(
                    event.settlement_key, event.side, SettlementStatus.SKIPPED,
                    error=str(exc), reason="ledger lookup failed",
                ))

        recovered = sum(1 for r in results if r.status is SettlementStatus.SETTLED)
        logger.info("Recovery sweep: %d/%d settled", recovered, len(results))
        return results

    async def _reconcile(self, event: OrderEvent) -> SettlementResult:
        state = self.journal.state_of(event.settlement_key)
        if state is SettlementState.BURNED:
            return await self._reconcile_payout(event)
        if state is SettlementState.FAILED:
            return await self._reconcile_failed(event)
        return await self._reconcile_pending(event)

    async def _reconcile_pending(self, event: OrderEvent) -> SettlementResult:
        phase = _first_phase(event)
        outcome, signature = await self._outcome(event, phase)

        if outcome is SubmissionOutcome.LANDED:
            return await self.orchestrator.adopt(event, phase, signature)
        if outcome is SubmissionOutcome.IN_FLIGHT:
            return self._in_flight(event, phase, signature)
        if outcome is SubmissionOutcome.FAILED:
            error = f"{phase} transaction {signature} failed on-chain"
            logger.error(error, extra=self._extra(event, phase=phase, tx=signature))
            self.journal.record_phase(event.settlement_key, SettlementState.FAILED,
                                      tx=signature, error=error)
            return SettlementResult(event.settlement_key, event.side,
                                    SettlementStatus.FAILED, error=error)

        logger.info("Resuming settlement (%s not on ledger)", phase,
                    extra=self._extra(event, phase=phase, tx=signature))
        if event.side is OrderSide.BUY:
            return await self.orchestrator.settle_buy(event)
        return await self.orchestrator.settle_sell(event)

    async def _reconcile_payout(self, event: OrderEvent) -> SettlementResult:
        outcome, signature = await self._outcome(event, "payout")

        if outcome is SubmissionOutcome.LANDED:
            self.journal.record_phase(event.settlement_key, SettlementState.PAID_OUT, tx=signature)
            logger.info("Payout found on ledger", extra=self._extra(event, phase="payout", tx=signature))
            return SettlementResult(event.settlement_key, event.side,
                                    SettlementStatus.SETTLED, {"payout": signature})
        if outcome is SubmissionOutcome.IN_FLIGHT:
            return self._in_flight(event, "payout", signature)

        logger.info("Retrying payout", extra=self._extra(event, phase="payout", tx=signature))
        return await self.orchestrator.pay_out(event)

    async def _reconcile_failed(self, event: OrderEvent) -> SettlementResult:
        key = event.settlement_key
        signature = self.journal.failed_tx(key)
        recorded = [s for s in self.journal.submissions(key) if s["tx"] == signature]
        phase = recorded[-1]["phase"] if recorded else _first_phase(event)
        last_valid = recorded[-1]["last_valid_height"] if recorded else 0

        outcome = await self.orchestrator.sender.lookup(signature, last_valid)
        if outcome is SubmissionOutcome.LANDED:
            logger.warning("Transaction journalled as failed landed",
                           extra=self._extra(event, phase=phase, tx=signature))
            return await self.orchestrator.adopt(event, phase, signature)
        if outcome is SubmissionOutcome.IN_FLIGHT:
            return self._in_flight(event, phase, signature)

        error = f"{phase} transaction {signature} did not land"
        self.journal.record_phase(key, SettlementState.FAILED, error=error)
        return SettlementResult(key, event.side, SettlementStatus.FAILED, error=error)

    async def _outcome(
        self,
        event: OrderEvent,
        phase: str,
    ) -> Tuple[Optional[SubmissionOutcome], Optional[str]]:
        """
        Combined outcome of every recorded submission of one step.

        Returns (None, None) when nothing was recorded. Otherwise a landed
        submission wins, then one still in flight, then the newest.
        """
        submissions = self.journal.submissions(event.settlement_key, phase)
        if not submissions:
            return None, None

        outcomes: Dict[str, SubmissionOutcome] = {}
        for submission in reversed(submissions):
            signature = submission["tx"]
            outcome = await self.orchestrator.sender.lookup(signature, submission["last_valid_height"])
            if outcome is SubmissionOutcome.LANDED:
                return outcome, signature
            outcomes[signature] = outcome

        for signature, outcome in outcomes.items():
            if outcome is SubmissionOutcome.IN_FLIGHT:
                return outcome, signature
        newest = submissions[-1]["tx"]
        return outcomes[newest], newest

    def _in_flight(self, event: OrderEvent, phase: str, signature: str) -> SettlementResult:
        logger.warning("%s still in flight, left for next sweep", phase,
                       extra=self._extra(event, phase=phase, tx=signature))
        return SettlementResult(event.settlement_key, event.side, SettlementStatus.SKIPPED,
                                {phase: signature}, reason=f"{phase} in flight")

    @staticmethod
    def _extra(event: OrderEvent, **fields) -> dict:
        extra = {"settlement_key": event.settlement_key, "user": str(event.user)}
        extra.update(fields)
        return extra
