"""
tests/test_journal.py

Settlement journal persistence, chain integrity, and the recovery sweep.
"""

import json

import pytest

from spoutrelay.core.canonical import canonical_hash
from spoutrelay.core.exceptions import JournalError, RpcError, TransactionError
from spoutrelay.core.models import SettlementState, SettlementStatus, SubmissionOutcome
from spoutrelay.settlement.journal import GENESIS_HASH, SettlementJournal
from spoutrelay.settlement.orchestrator import SettlementOrchestrator
from spoutrelay.settlement.recovery import RecoverySweep


@pytest.fixture
def path(tmp_path):
    return tmp_path / "relayer" / "journal.jsonl"


def rewrite_line(path, index, mutate):
    lines = path.read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[index])
    mutate(entry)
    lines[index] = json.dumps(entry)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


# ─────────────────────────────────────────────────────────────
# Journal
# ─────────────────────────────────────────────────────────────

class TestJournal:

    def test_new_journal_is_empty(self, path):
        journal = SettlementJournal(path)
        assert journal.entries == []
        assert journal.watermark is None
        assert not path.exists()

    def test_intent_then_phases(self, path, sell_event):
        journal = SettlementJournal(path)
        key = sell_event.settlement_key

        journal.record_intent(sell_event)
        assert journal.is_known(key)
        assert journal.state_of(key) is SettlementState.PENDING

        journal.record_phase(key, SettlementState.BURNED, tx="burnSig")
        assert journal.state_of(key) is SettlementState.BURNED
        assert journal.pending_payouts() == [sell_event]

        journal.record_phase(key, SettlementState.PAID_OUT, tx="payoutSig")
        assert journal.pending_payouts() == []

    def test_entries_are_chained(self, path, buy_event, sell_event):
        journal = SettlementJournal(path)
        journal.record_intent(buy_event)
        journal.record_intent(sell_event)
        journal.set_watermark("sigNewest")

        first, second, third = journal.entries
        assert first.previous_hash == GENESIS_HASH
        assert second.previous_hash == first.compute_hash()
        assert third.previous_hash == second.compute_hash()
        assert first.data_hash == canonical_hash(first.data)
        assert first.timestamp.endswith("Z")

    def test_reopen_restores_state(self, path, buy_event, sell_event):
        journal = SettlementJournal(path)
        journal.record_intent(buy_event)
        journal.record_phase(buy_event.settlement_key, SettlementState.MINTED, tx="m")
        journal.record_intent(sell_event)
        journal.record_phase(sell_event.settlement_key, SettlementState.BURNED, tx="b")
        journal.set_watermark("sigW")

        reopened = SettlementJournal(path)
        assert reopened.state_of(buy_event.settlement_key) is SettlementState.MINTED
        assert reopened.state_of(sell_event.settlement_key) is SettlementState.BURNED
        assert reopened.pending_payouts() == [sell_event]
        assert reopened.watermark == "sigW"
        assert len(reopened.entries) == 5

    def test_unchanged_watermark_not_rewritten(self, path):
        journal = SettlementJournal(path)
        assert journal.set_watermark("sigA") is not None
        assert journal.set_watermark("sigA") is None
        assert len(journal.entries) == 1

    def test_duplicate_intent_rejected(self, path, buy_event):
        journal = SettlementJournal(path)
        journal.record_intent(buy_event)
        with pytest.raises(JournalError):
            journal.record_intent(buy_event)

    def test_phase_without_intent_rejected(self, path):
        journal = SettlementJournal(path)
        with pytest.raises(JournalError):
            journal.record_phase("unknown:0", SettlementState.MINTED)

    def test_tampered_data_detected(self, path, sell_event):
        journal = SettlementJournal(path)
        journal.record_intent(sell_event)

        def inflate(entry):
            entry["data"]["event"]["usdc_amount"] = 999_000000
        rewrite_line(path, 0, inflate)

        with pytest.raises(JournalError):
            SettlementJournal(path)

    def test_chain_break_detected(self, path, buy_event, sell_event):
        journal = SettlementJournal(path)
        journal.record_intent(buy_event)
        journal.record_intent(sell_event)

        def relink(entry):
            entry["previous_hash"] = "f" * 64
        rewrite_line(path, 1, relink)

        with pytest.raises(JournalError) as exc_info:
            SettlementJournal(path)
        assert "Chain break" in str(exc_info.value)

    def test_invalid_json_detected(self, path):
        path.parent.mkdir(parents=True)
        path.write_text("{not json\n", encoding="utf-8")
        with pytest.raises(JournalError):
            SettlementJournal(path)

    def test_submissions_survive_reopen(self, path, sell_event):
        journal = SettlementJournal(path)
        key = sell_event.settlement_key
        journal.record_intent(sell_event)
        journal.record_submission(key, "burn", "BURN1", 150)
        journal.record_submission(key, "burn", "BURN2", 420)

        reopened = SettlementJournal(path)
        assert [s["tx"] for s in reopened.submissions(key, "burn")] == ["BURN1", "BURN2"]
        assert reopened.submissions(key, "payout") == []
        assert reopened.submissions(key)[1]["last_valid_height"] == 420
        # A submission does not move the state
        assert reopened.state_of(key) is SettlementState.PENDING

    def test_submission_without_intent_rejected(self, path):
        with pytest.raises(JournalError):
            SettlementJournal(path).record_submission("unknown:0", "mint", "MINT1", 1)

    def test_unsettled(self, path, buy_event, sell_event):
        journal = SettlementJournal(path)
        journal.record_intent(buy_event)
        journal.record_intent(sell_event)
        assert journal.unsettled() == [buy_event, sell_event]

        journal.record_phase(buy_event.settlement_key, SettlementState.MINTED, tx="MINT1")
        journal.record_phase(sell_event.settlement_key, SettlementState.BURNED, tx="BURN1")
        assert journal.unsettled() == [sell_event]

        journal.record_phase(sell_event.settlement_key, SettlementState.FAILED, tx="BURN1")
        assert journal.failed_tx(sell_event.settlement_key) == "BURN1"
        assert journal.unsettled() == [sell_event]

        journal.record_phase(sell_event.settlement_key, SettlementState.FAILED, error="did not land")
        assert journal.failed_tx(sell_event.settlement_key) is None
        assert journal.unsettled() == []

    def test_stats(self, path, buy_event, sell_event):
        journal = SettlementJournal(path)
        journal.record_intent(buy_event)
        journal.record_phase(buy_event.settlement_key, SettlementState.MINTED)
        journal.record_intent(sell_event)

        stats = journal.get_stats()
        assert stats["total_entries"] == 3
        assert stats["by_type"] == {"intent": 2, "phase": 1}
        assert stats["by_state"] == {"minted": 1, "pending": 1}


# ─────────────────────────────────────────────────────────────
# Recovery sweep
# ─────────────────────────────────────────────────────────────

class TestRecoverySweep:

    @pytest.mark.asyncio
    async def test_retries_payout_only(self, path, rpc, sender, deriver, deployment, sell_event):
        journal = SettlementJournal(path)
        orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, journal)

        sender.failures["payout"] = TransactionError("treasury empty")
        first = await orchestrator.settle(sell_event)
        assert first.status is SettlementStatus.PARTIAL

        # Restart: fresh journal object from disk, treasury refilled
        del sender.failures["payout"]
        sender.submitted.clear()
        reopened = SettlementJournal(path)
        orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, reopened)

        results = await RecoverySweep(orchestrator, reopened).run()

        assert [r.status for r in results] == [SettlementStatus.SETTLED]
        assert "burn" not in sender.labels
        assert sender.labels[-1] == "payout"
        assert reopened.state_of(sell_event.settlement_key) is SettlementState.PAID_OUT
        assert reopened.pending_payouts() == []

    @pytest.mark.asyncio
    async def test_failed_retry_stays_pending(self, path, rpc, sender, deriver, deployment, sell_event):
        journal = SettlementJournal(path)
        orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, journal)
        sender.failures["payout"] = TransactionError("treasury empty")
        await orchestrator.settle(sell_event)

        results = await RecoverySweep(orchestrator, journal).run()

        assert [r.status for r in results] == [SettlementStatus.PARTIAL]
        assert journal.state_of(sell_event.settlement_key) is SettlementState.BURNED

    @pytest.mark.asyncio
    async def test_nothing_to_recover(self, path, orchestrator):
        assert await RecoverySweep(orchestrator, SettlementJournal(path)).run() == []


# ─────────────────────────────────────────────────────────────
# Reconciliation with the ledger
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def settled_accounts(rpc, deriver, deployment, user):
    rpc.accounts.add(deriver.associated_account(user, deployment.asset_mint))
    rpc.accounts.add(deriver.associated_account(user, deployment.usdc_mint))


@pytest.fixture
def journal(path):
    return SettlementJournal(path)


@pytest.fixture
def journalled(rpc, sender, deriver, deployment, journal):
    return SettlementOrchestrator(rpc, sender, deriver, deployment, journal)


def unconfirmed(step, signature):
    return TransactionError(f"{step} confirmation interrupted", signature=signature, unconfirmed=True)


@pytest.mark.usefixtures("settled_accounts")
class TestReconciliation:

    @pytest.mark.asyncio
    async def test_landed_payout_is_not_paid_twice(self, path, journalled, sender, sell_event):
        sender.failures["payout"] = unconfirmed("payout", "PAYOUT1")
        first = await journalled.settle(sell_event)
        assert first.status is SettlementStatus.PARTIAL

        # Restart. The payout had in fact landed.
        del sender.failures["payout"]
        sender.outcomes["PAYOUT1"] = SubmissionOutcome.LANDED
        reopened = SettlementJournal(path)
        orchestrator = SettlementOrchestrator(journalled.rpc, sender, journalled.deriver,
                                              journalled.deployment, reopened)

        results = await RecoverySweep(orchestrator, reopened).run()

        assert [r.status for r in results] == [SettlementStatus.SETTLED]
        assert results[0].transactions == {"payout": "PAYOUT1"}
        assert sender.labels.count("payout") == 1
        assert sender.lookups == [("PAYOUT1", 100)]
        assert reopened.state_of(sell_event.settlement_key) is SettlementState.PAID_OUT
        assert reopened.unsettled() == []

    @pytest.mark.asyncio
    async def test_payout_in_flight_is_left_alone(self, journalled, journal, sender, sell_event):
        sender.failures["payout"] = unconfirmed("payout", "PAYOUT1")
        await journalled.settle(sell_event)
        del sender.failures["payout"]
        sender.outcomes["PAYOUT1"] = SubmissionOutcome.IN_FLIGHT

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.status is SettlementStatus.SKIPPED
        assert sender.labels.count("payout") == 1
        assert journal.state_of(sell_event.settlement_key) is SettlementState.BURNED

    @pytest.mark.asyncio
    async def test_dropped_payout_is_submitted_once_more(self, journalled, journal, sender, sell_event):
        sender.failures["payout"] = unconfirmed("payout", "PAYOUT1")
        await journalled.settle(sell_event)
        del sender.failures["payout"]

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.ok
        assert sender.labels.count("payout") == 2
        assert result.transactions["payout"] == "PAYOUT2"
        assert journal.state_of(sell_event.settlement_key) is SettlementState.PAID_OUT
        assert await RecoverySweep(journalled, journal).run() == []

    @pytest.mark.asyncio
    async def test_any_landed_payout_wins(self, journalled, journal, sender, sell_event):
        key = sell_event.settlement_key
        journal.record_intent(sell_event)
        journal.record_phase(key, SettlementState.BURNED, tx="BURN1")
        journal.record_submission(key, "payout", "PAYOUT1", 100)
        journal.record_submission(key, "payout", "PAYOUT2", 300)
        sender.outcomes["PAYOUT1"] = SubmissionOutcome.LANDED

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.transactions == {"payout": "PAYOUT1"}
        assert "payout" not in sender.labels
        assert journal.state_of(key) is SettlementState.PAID_OUT

    @pytest.mark.asyncio
    async def test_expired_burn_that_landed_is_paid_out(self, journalled, journal, sender, sell_event):
        sender.failures["burn"] = TransactionError(
            "burn expired before confirmation", signature="BURN1", unconfirmed=True,
        )
        first = await journalled.settle(sell_event)
        assert first.status is SettlementStatus.FAILED
        assert journal.state_of(sell_event.settlement_key) is SettlementState.PENDING

        del sender.failures["burn"]
        sender.outcomes["BURN1"] = SubmissionOutcome.LANDED
        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.ok
        assert result.transactions["burn"] == "BURN1"
        assert sender.labels == ["burn", "payout"]
        assert journal.state_of(sell_event.settlement_key) is SettlementState.PAID_OUT

    @pytest.mark.asyncio
    async def test_burn_reverted_on_chain_is_failed(self, journalled, journal, sender, sell_event):
        sender.failures["burn"] = unconfirmed("burn", "BURN1")
        await journalled.settle(sell_event)
        del sender.failures["burn"]
        sender.outcomes["BURN1"] = SubmissionOutcome.FAILED

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.status is SettlementStatus.FAILED
        assert "payout" not in sender.labels
        assert journal.state_of(sell_event.settlement_key) is SettlementState.FAILED

    @pytest.mark.asyncio
    async def test_dropped_burn_is_resubmitted(self, journalled, journal, sender, sell_event):
        sender.failures["burn"] = unconfirmed("burn", "BURN1")
        await journalled.settle(sell_event)
        del sender.failures["burn"]

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.ok
        assert sender.labels == ["burn", "burn", "payout"]
        assert [s["tx"] for s in journal.submissions(sell_event.settlement_key, "burn")] == [
            "BURN1", "BURN2",
        ]

    @pytest.mark.asyncio
    async def test_intent_without_submission_is_resumed(self, journalled, journal, sender, buy_event):
        journal.record_intent(buy_event)

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.ok
        assert sender.labels == ["mint"]
        assert sender.lookups == []
        assert journal.state_of(buy_event.settlement_key) is SettlementState.MINTED

    @pytest.mark.asyncio
    async def test_failed_burn_that_landed_is_reconciled(self, journalled, journal, sender, sell_event):
        key = sell_event.settlement_key
        journal.record_intent(sell_event)
        journal.record_submission(key, "burn", "BURN1", 100)
        journal.record_phase(key, SettlementState.FAILED, tx="BURN1", error="burn expired")
        sender.outcomes["BURN1"] = SubmissionOutcome.LANDED

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.ok
        assert sender.labels == ["payout"]
        assert journal.state_of(key) is SettlementState.PAID_OUT

    @pytest.mark.asyncio
    async def test_failed_burn_that_never_landed_is_closed(self, journalled, journal, sender, sell_event):
        key = sell_event.settlement_key
        journal.record_intent(sell_event)
        journal.record_submission(key, "burn", "BURN1", 100)
        journal.record_phase(key, SettlementState.FAILED, tx="BURN1", error="burn rejected")

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.status is SettlementStatus.FAILED
        assert sender.labels == []
        assert journal.state_of(key) is SettlementState.FAILED
        assert journal.unsettled() == []

    @pytest.mark.asyncio
    async def test_lookup_failure_changes_nothing(self, journalled, journal, sender, sell_event):
        sender.failures["payout"] = unconfirmed("payout", "PAYOUT1")
        await journalled.settle(sell_event)
        del sender.failures["payout"]
        sender.lookup_error = RpcError("timeout", method="getSignatureStatuses")
        entries = len(journal.entries)

        (result,) = await RecoverySweep(journalled, journal).run()

        assert result.status is SettlementStatus.SKIPPED
        assert sender.labels.count("payout") == 1
        assert len(journal.entries) == entries
