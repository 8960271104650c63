"""
tests/test_watcher.py

Polling ticks over a fake ledger node.

Laws:
    - one bad signature, transaction, or event never stops its siblings
    - stateless mode settles an event again while it is inside the window
    - journalled mode settles each event once and advances the watermark
      only after the whole window was read
"""

import pytest

from helpers.fakes import addr, order_payload, program_logs
from spoutrelay.core.exceptions import RpcError, TransactionError
from spoutrelay.events.parser import ParsedEvent
from spoutrelay.settlement.journal import SettlementJournal
from spoutrelay.settlement.orchestrator import SettlementOrchestrator
from spoutrelay.watcher.watcher import EventWatcher


PROGRAM = addr("orders-program")


def buy_logs(user, asset_amount=1_000000):
    return program_logs(PROGRAM, order_payload(
        "BuyOrderCreated", user, usdc_amount=100_000000,
        asset_amount=asset_amount, price=100_000000,
    ))


def sell_logs(user):
    return program_logs(PROGRAM, order_payload(
        "SellOrderCreated", user, usdc_amount=56_000000, asset_amount=500000,
    ))


@pytest.fixture
def watcher(rpc, orchestrator):
    return EventWatcher(rpc, orchestrator, PROGRAM, lookback_limit=5, poll_interval=0)


@pytest.fixture
def journal(tmp_path):
    return SettlementJournal(tmp_path / "journal.jsonl")


@pytest.fixture
def journalled_watcher(rpc, sender, deriver, deployment, journal):
    orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, journal)
    return EventWatcher(rpc, orchestrator, PROGRAM, lookback_limit=5,
                        poll_interval=0, journal=journal)


class StubParser:
    """Yields fixed records regardless of the logs."""

    def __init__(self, records):
        self.records = records

    def parse_logs(self, logs):
        return iter(self.records)


# ─────────────────────────────────────────────────────────────
# Stateless ticks
# ─────────────────────────────────────────────────────────────

class TestTick:

    @pytest.mark.asyncio
    async def test_no_signatures(self, watcher, sender):
        report = await watcher.tick()
        assert report.signatures == 0
        assert report.events == 0
        assert sender.labels == []

    @pytest.mark.asyncio
    async def test_buy_and_sell_settled(self, watcher, rpc, sender, user):
        rpc.add_transaction("sig1", buy_logs(user))
        rpc.add_transaction("sig2", sell_logs(user))

        report = await watcher.tick()

        assert report.signatures == 2
        assert report.events == 2
        assert report.settled == 2
        # newest first: the sell is processed before the buy
        assert rpc.fetched == ["sig2", "sig1"]
        assert sender.labels.index("burn") < sender.labels.index("mint")
        assert "payout" in sender.labels

    @pytest.mark.asyncio
    async def test_settlement_keys_follow_signature_and_index(self, watcher, rpc, user):
        rpc.add_transaction("sigPair", program_logs(
            PROGRAM,
            order_payload("BuyOrderCreated", user, asset_amount=1),
            order_payload("BuyOrderCreated", user, asset_amount=2),
        ))
        report = await watcher.tick()
        assert [r.settlement_key for r in report.results] == ["sigPair:0", "sigPair:1"]

    @pytest.mark.asyncio
    async def test_listing_failure_ends_tick(self, watcher, rpc, sender, user):
        rpc.add_transaction("sig1", buy_logs(user))
        rpc.list_error = RpcError("rate limited", method="getSignaturesForAddress", code=429)

        report = await watcher.tick()

        assert report.rpc_failures == 1
        assert rpc.fetched == []
        assert sender.labels == []

    @pytest.mark.asyncio
    async def test_one_fetch_failure_spares_the_others(self, watcher, rpc, user):
        rpc.add_transaction("sigBad", buy_logs(user))
        rpc.add_transaction("sigGood", buy_logs(user))
        rpc.failing.add("sigBad")

        report = await watcher.tick()

        assert report.rpc_failures == 1
        assert report.settled == 1
        assert [r.settlement_key for r in report.results] == ["sigGood:0"]

    @pytest.mark.asyncio
    async def test_unavailable_transaction_counts_as_rpc_failure(self, watcher, rpc, user):
        rpc.add_transaction("sigLate", buy_logs(user))
        rpc.transactions["sigLate"] = None
        report = await watcher.tick()
        assert report.rpc_failures == 1
        assert report.events == 0

    @pytest.mark.asyncio
    async def test_failed_transactions_skipped(self, watcher, rpc, sender, user):
        rpc.add_transaction("sigErr", buy_logs(user), err={"InstructionError": [0, "Custom"]})

        report = await watcher.tick()

        assert rpc.fetched == []
        assert report.events == 0
        assert sender.labels == []

    @pytest.mark.asyncio
    async def test_truncated_payload_spares_siblings(self, watcher, rpc, user):
        broken = order_payload("SellOrderCreated", user)[:20]
        rpc.add_transaction("sigMixed", program_logs(
            PROGRAM, broken, order_payload("BuyOrderCreated", user, asset_amount=5),
        ))

        report = await watcher.tick()

        assert report.decode_failures == 1
        assert report.settled == 1

    @pytest.mark.asyncio
    async def test_missing_field_spares_siblings(self, rpc, orchestrator, sender, user):
        good = {
            "user": user, "ticker": "LQD", "usdc_amount": 1, "asset_amount": 7,
            "price": 1, "oracle_timestamp": 0,
        }
        no_user = {k: v for k, v in good.items() if k != "user"}
        parser = StubParser([
            ParsedEvent("BuyOrderCreated", no_user, 0),
            ParsedEvent("BuyOrderCreated", good, 1),
        ])
        watcher = EventWatcher(rpc, orchestrator, PROGRAM, poll_interval=0, parser=parser)
        rpc.add_transaction("sigFields", ["Program log: stub"])

        report = await watcher.tick()

        assert report.decode_failures == 1
        assert report.settled == 1
        assert sender.labels.count("mint") == 1

    @pytest.mark.asyncio
    async def test_failed_settlement_reported(self, watcher, rpc, sender, user):
        sender.failures["mint"] = TransactionError("AttestationInvalid")
        rpc.add_transaction("sig1", buy_logs(user))

        report = await watcher.tick()

        assert report.failed == 1
        assert report.settled == 0

    @pytest.mark.asyncio
    async def test_stateless_mode_settles_again_inside_window(self, watcher, rpc, sender, user):
        rpc.add_transaction("sig1", buy_logs(user))

        await watcher.tick()
        await watcher.tick()

        assert sender.labels.count("mint") == 2
        assert all(q["until"] is None for q in rpc.signature_queries)

    @pytest.mark.asyncio
    async def test_stateless_window_is_lookback_limit(self, watcher, rpc, user):
        for n in range(8):
            rpc.add_transaction(f"sig{n}", buy_logs(user))
        report = await watcher.tick()
        assert report.signatures == 5
        assert rpc.fetched == ["sig7", "sig6", "sig5", "sig4", "sig3"]


# ─────────────────────────────────────────────────────────────
# Journalled ticks
# ─────────────────────────────────────────────────────────────

class TestJournalledTick:

    @pytest.mark.asyncio
    async def test_watermark_advances(self, journalled_watcher, journal, rpc, sender, user):
        rpc.add_transaction("sig1", buy_logs(user))
        first = await journalled_watcher.tick()
        assert first.watermark == "sig1"
        assert journal.watermark == "sig1"

        rpc.add_transaction("sig2", buy_logs(user))
        second = await journalled_watcher.tick()

        assert rpc.signature_queries[-1]["until"] == "sig1"
        assert second.signatures == 1
        assert journal.watermark == "sig2"
        assert sender.labels.count("mint") == 2

    @pytest.mark.asyncio
    async def test_quiet_tick_keeps_watermark(self, journalled_watcher, journal, rpc, user):
        rpc.add_transaction("sig1", buy_logs(user))
        await journalled_watcher.tick()
        report = await journalled_watcher.tick()
        assert report.signatures == 0
        assert journal.watermark == "sig1"

    @pytest.mark.asyncio
    async def test_held_watermark_and_dedupe(self, journalled_watcher, journal, rpc, sender, user):
        rpc.add_transaction("sigOld", buy_logs(user))
        rpc.add_transaction("sigNew", buy_logs(user))
        rpc.failing.add("sigOld")

        first = await journalled_watcher.tick()
        assert first.settled == 1
        assert first.watermark is None
        assert journal.watermark is None

        rpc.failing.clear()
        second = await journalled_watcher.tick()

        assert second.settled == 1
        assert second.skipped == 1
        assert journal.watermark == "sigNew"
        assert sender.labels.count("mint") == 2

    @pytest.mark.asyncio
    async def test_pages_back_to_watermark(self, journalled_watcher, journal, rpc, user):
        rpc.add_transaction("sig00", buy_logs(user))
        journal.set_watermark("sig00")
        for n in range(1, 12):
            rpc.add_transaction(f"sig{n:02d}", buy_logs(user))

        report = await journalled_watcher.tick()

        assert report.signatures == 11
        assert [q["before"] for q in rpc.signature_queries] == [None, "sig07", "sig02"]
        assert all(q["until"] == "sig00" for q in rpc.signature_queries)
        assert "sig00" not in rpc.fetched
        assert journal.watermark == "sig11"

    @pytest.mark.asyncio
    async def test_backlog_beyond_max_pages_holds_watermark(
        self, rpc, sender, deriver, deployment, journal, user,
    ):
        orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, journal)
        watcher = EventWatcher(rpc, orchestrator, PROGRAM, lookback_limit=5,
                               poll_interval=0, journal=journal, max_pages=2)
        rpc.add_transaction("sig00", buy_logs(user))
        journal.set_watermark("sig00")
        for n in range(1, 15):
            rpc.add_transaction(f"sig{n:02d}", buy_logs(user))

        report = await watcher.tick()

        assert report.signatures == 10
        assert journal.watermark == "sig00"

    @pytest.mark.asyncio
    async def test_in_flight_key_skipped(self, journalled_watcher, rpc, sender, user):
        rpc.add_transaction("sigBusy", buy_logs(user))
        journalled_watcher._claimed.add("sigBusy:0")

        report = await journalled_watcher.tick()

        assert report.skipped == 1
        assert sender.labels == []


# ─────────────────────────────────────────────────────────────
# Loop
# ─────────────────────────────────────────────────────────────

class TestRun:

    @pytest.mark.asyncio
    async def test_runs_max_ticks(self, watcher, rpc):
        await watcher.run(max_ticks=2)
        assert len(rpc.signature_queries) == 2

    @pytest.mark.asyncio
    async def test_stop_before_run_still_runs_one_tick(self, watcher, rpc):
        watcher.stop()
        await watcher.run(max_ticks=1)
        assert len(rpc.signature_queries) == 1

    def test_lookback_must_be_positive(self, rpc, orchestrator):
        with pytest.raises(ValueError):
            EventWatcher(rpc, orchestrator, PROGRAM, lookback_limit=0)
