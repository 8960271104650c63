"""
spoutrelay/watcher/watcher.py

Polls the order program for new BuyOrderCreated / SellOrderCreated events
and hands each decoded event to the orchestrator.

One tick:
    1. getSignaturesForAddress(order_program)        newest first
    2. for each signature, in returned order:
         getTransaction → skip if failed or no logs
         parse logs → decode each known event → settle it
    3. with a journal: advance the watermark to the newest signature if
       every transaction in the window was fetched

Failure scope:
    signature listing fails   → tick ends, nothing processed
    one transaction fetch     → that signature skipped, watermark held
    one event decode          → that event skipped, siblings processed
    one settlement            → reported, the rest continue
tick() never raises (cancellation excepted).

Modes:
    stateless (no journal)    the last `lookback_limit` signatures are
                              rescanned every tick; an event still inside
                              that window is settled again, and events
                              older than the window are never seen
    journalled                query with until=watermark and page back
                              with before= (up to max_pages), skip any
                              settlement key already in the journal, and
                              claim in-flight keys so overlapping ticks
                              cannot settle the same event twice
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from solders.pubkey import Pubkey

from spoutrelay.core.exceptions import (
    EventDecodeError,
    JournalError,
    RelayerError,
    RpcError,
)
from spoutrelay.core.models import OrderEvent, SettlementStatus
from spoutrelay.events.decoder import FieldSchema, decode_event
from spoutrelay.events.parser import EventParser
from spoutrelay.ledger.rpc import RpcClient, SignatureInfo
from spoutrelay.settlement.journal import SettlementJournal
from spoutrelay.settlement.orchestrator import SettlementOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_LIMIT = 5
DEFAULT_POLL_INTERVAL  = 15.0
DEFAULT_MAX_PAGES      = 10


@dataclass
class TickReport:
    """Counters for one polling tick."""
    signatures:      int = 0
    events:          int = 0
    settled:         int = 0
    skipped:         int = 0
    failed:          int = 0
    decode_failures: int = 0
    rpc_failures:    int = 0
    watermark:       Optional[str] = None
    results:         List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signatures":      self.signatures,
            "events":          self.events,
            "settled":         self.settled,
            "skipped":         self.skipped,
            "failed":          self.failed,
            "decode_failures": self.decode_failures,
            "rpc_failures":    self.rpc_failures,
            "watermark":       self.watermark,
        }


class EventWatcher:
    """
    Usage:
        watcher = EventWatcher(rpc, orchestrator, orders_program_id, journal=journal)
        report  = await watcher.tick()        # one pass
        await watcher.run()                   # every poll_interval until stop()
    """

    def __init__(
        self,
        rpc:            RpcClient,
        orchestrator:   SettlementOrchestrator,
        program_id:     Pubkey,
        lookback_limit: int = DEFAULT_LOOKBACK_LIMIT,
        poll_interval:  float = DEFAULT_POLL_INTERVAL,
        schema:         FieldSchema = FieldSchema.TOLERANT,
        journal:        Optional[SettlementJournal] = None,
        max_pages:      int = DEFAULT_MAX_PAGES,
        parser:         Optional[EventParser] = None,
    ):
        if lookback_limit < 1:
            raise ValueError("lookback_limit must be at least 1")
        self.rpc            = rpc
        self.orchestrator   = orchestrator
        self.program_id     = program_id
        self.lookback_limit = lookback_limit
        self.poll_interval  = poll_interval
        self.schema         = schema
        self.journal        = journal
        self.max_pages      = max(1, max_pages)
        self.parser         = parser or EventParser(program_id)

        self._claimed: Set[str] = set()
        self._stop    = asyncio.Event()
        self._tasks:  Set[asyncio.Task] = set()

    # ── Polling loop ─────────────────────────────────────────

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Start a tick every poll_interval seconds until stop() or max_ticks.

        Ticks are independent tasks: a tick that outlasts the interval
        overlaps the next one.
        """
        self._stop.clear()
        started = 0
        logger.info(
            "Watching %s every %.1fs (lookback %d, %s)",
            self.program_id, self.poll_interval, self.lookback_limit,
            "journalled" if self.journal is not None else "stateless",
        )
        try:
            while not self._stop.is_set():
                task = asyncio.create_task(self.tick())
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                started += 1
                if max_ticks is not None and started >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._tasks:
                await asyncio.gather(*list(self._tasks))
        logger.info("Watcher stopped after %d tick(s)", started)

    def stop(self) -> None:
        self._stop.set()

    # ── One tick ─────────────────────────────────────────────

    async def tick(self) -> TickReport:
        report = TickReport()

        try:
            signatures, complete = await self.fetch_signatures()
        except RpcError as exc:
            logger.error("Failed to list signatures: %s", exc)
            report.rpc_failures += 1
            return report

        report.signatures = len(signatures)
        if not signatures:
            logger.debug("No new signatures")
            return report

        for info in signatures:
            signature = info.signature
            if info.err is not None:
                logger.debug("Skipping failed transaction %s", signature)
                continue
            if not await self._process_signature(signature, report):
                complete = False

        if self.journal is not None and complete:
            newest = signatures[0].signature
            try:
                self.journal.set_watermark(newest)
                report.watermark = newest
            except JournalError as exc:
                logger.error("Failed to persist watermark: %s", exc)
        elif self.journal is not None:
            logger.warning("Watermark held: not every transaction in the window was read")

        logger.info("Tick complete", extra={"report": report.to_dict()})
        return report

    async def fetch_signatures(self) -> Tuple[List[SignatureInfo], bool]:
        """
        Signatures to process this tick, newest first, and whether
        the list provably reaches back to the watermark.
        """
        if self.journal is None:
            page = await self.rpc.get_signatures_for_address(
                self.program_id, limit=self.lookback_limit
            )
            return page, True

        watermark = self.journal.watermark
        if watermark is None:
            # First run: start from the current window, do not scan history
            page = await self.rpc.get_signatures_for_address(
                self.program_id, limit=self.lookback_limit
            )
            return page, True

        collected: List[SignatureInfo] = []
        before: Optional[str] = None
        for _ in range(self.max_pages):
            page = await self.rpc.get_signatures_for_address(
                self.program_id, limit=self.lookback_limit, before=before, until=watermark
            )
            collected.extend(page)
            if len(page) < self.lookback_limit:
                return collected, True
            before = page[-1].signature

        logger.warning(
            "Backlog exceeds %d page(s) of %d; processing the newest part only",
            self.max_pages, self.lookback_limit,
        )
        return collected, False

    async def _process_signature(self, signature: str, report: TickReport) -> bool:
        """Returns False if the transaction could not be read."""
        try:
            tx = await self.rpc.get_transaction(signature)
        except RpcError as exc:
            logger.error("Failed to fetch transaction: %s", exc, extra={"signature": signature})
            report.rpc_failures += 1
            return False

        if tx is None:
            logger.warning("Transaction not yet visible", extra={"signature": signature})
            report.rpc_failures += 1
            return False

        if tx.err is not None or not tx.logs:
            return True

        for parsed in self.parser.parse_logs(tx.logs):
            if parsed.error:
                logger.error(
                    "Undecodable %s payload: %s", parsed.name, parsed.error,
                    extra={"signature": signature},
                )
                report.decode_failures += 1
                continue
            try:
                event = decode_event(
                    parsed.name, parsed.data, self.schema,
                    signature=signature, log_index=parsed.index,
                )
            except EventDecodeError as exc:
                logger.error(
                    "Failed to decode %s: %s", parsed.name, exc,
                    extra={"signature": signature},
                )
                report.decode_failures += 1
                continue

            report.events += 1
            await self._settle(event, report)
        return True

    async def _settle(self, event: OrderEvent, report: TickReport) -> None:
        key = event.settlement_key
        if self.journal is not None:
            if key in self._claimed:
                logger.info("Event already in flight", extra={"settlement_key": key})
                report.skipped += 1
                return
            self._claimed.add(key)

        try:
            result = await self.orchestrator.settle(event)
        except RelayerError as exc:
            logger.error("Settlement aborted: %s", exc, extra={"settlement_key": key})
            report.failed += 1
            return
        finally:
            self._claimed.discard(key)

        report.results.append(result)
        if result.status is SettlementStatus.SETTLED:
            report.settled += 1
        elif result.status is SettlementStatus.SKIPPED:
            report.skipped += 1
        else:
            report.failed += 1
