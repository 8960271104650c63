"""
spoutrelay/settlement/journal.py

Settlement journal: append-only, hash-chained JSONL record of what the
relayer has decided and done.

Entry layout (one JSON object per line):

    {
      "index":         0,
      "previous_hash": "000...0",          # entry_hash of previous entry
      "timestamp":     "2026-01-01T00:00:00.000Z",
      "entry_type":    "intent" | "phase" | "submission" | "watermark",
      "data":          {...},
      "data_hash":     hex(SHA-256(JCS(data)))
    }

    entry_hash = hex(SHA-256(JCS({index, previous_hash, timestamp,
                                  entry_type, data_hash})))

Entry types:
    intent      {"settlement_key", "event"}               state → pending
    phase       {"settlement_key", "state", "tx", "error"}
    submission  {"settlement_key", "phase", "tx", "last_valid_height"}
    watermark   {"signature"}

A submission entry is written the moment a transaction is signed, before
it is sent, and does not change the settlement state. It is what lets a
restart tell a transaction that landed from one that never will.

The in-memory view (state, intent and submissions per key, watermark) is rebuilt
from the entries on open, after the chain has been verified. A journal
that fails verification is never written to.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from spoutrelay.core.canonical import canonical_hash
from spoutrelay.core.exceptions import JournalError
from spoutrelay.core.models import OrderEvent, SettlementState
from spoutrelay.core.time import utc_timestamp

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

ENTRY_INTENT     = "intent"
ENTRY_PHASE      = "phase"
ENTRY_SUBMISSION = "submission"
ENTRY_WATERMARK  = "watermark"
ENTRY_TYPES      = (ENTRY_INTENT, ENTRY_PHASE, ENTRY_SUBMISSION, ENTRY_WATERMARK)


@dataclass
class JournalEntry:
    """A single line of the journal"""
    index:         int
    previous_hash: str
    timestamp:     str
    entry_type:    str
    data:          Dict[str, Any]
    data_hash:     str

    def to_dict(self) -> dict:
        return {
            "index":         self.index,
            "previous_hash": self.previous_hash,
            "timestamp":     self.timestamp,
            "entry_type":    self.entry_type,
            "data":          self.data,
            "data_hash":     self.data_hash,
        }

    @staticmethod
    def from_dict(data: dict) -> "JournalEntry":
        return JournalEntry(
            index=         data["index"],
            previous_hash= data["previous_hash"],
            timestamp=     data["timestamp"],
            entry_type=    data["entry_type"],
            data=          data["data"],
            data_hash=     data["data_hash"],
        )

    def compute_hash(self) -> str:
        """Hash of this entry for chaining"""
        return canonical_hash({
            "index":         self.index,
            "previous_hash": self.previous_hash,
            "timestamp":     self.timestamp,
            "entry_type":    self.entry_type,
            "data_hash":     self.data_hash,
        })


class SettlementJournal:
    """
    Durable settlement state for one relayer deployment.

    Usage:
        journal = SettlementJournal(Path("relayer.journal.jsonl"))
        journal.record_intent(event)
        journal.record_submission(event.settlement_key, "burn", sig, last_valid_height)
        journal.record_phase(event.settlement_key, SettlementState.BURNED, tx=sig)
        for event in journal.unsettled():
            ...
    """

    GENESIS_HASH = GENESIS_HASH

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries: List[JournalEntry] = []
        self._states:      Dict[str, SettlementState] = {}
        self._intents:     Dict[str, Dict[str, Any]] = {}
        self._submissions: Dict[str, List[Dict[str, Any]]] = {}
        self._last_phase:  Dict[str, Dict[str, Any]] = {}
        self._watermark:   Optional[str] = None

        if self.path.exists():
            self._load()
            self.verify_or_raise()
            for entry in self.entries:
                self._apply(entry)

    # ── Writes ───────────────────────────────────────────────

    def record_intent(self, event: OrderEvent) -> JournalEntry:
        key = event.settlement_key
        if key in self._intents:
            raise JournalError("Intent already recorded", {"settlement_key": key})
        return self._append(ENTRY_INTENT, {
            "settlement_key": key,
            "event":          event.to_dict(),
        })

    def record_phase(
        self,
        key:   str,
        state: SettlementState,
        tx:    Optional[str] = None,
        error: Optional[str] = None,
    ) -> JournalEntry:
        if key not in self._intents:
            raise JournalError("Phase recorded without intent", {"settlement_key": key})
        return self._append(ENTRY_PHASE, {
            "settlement_key": key,
            "state":          SettlementState(state).value,
            "tx":             tx,
            "error":          error,
        })

    def record_submission(
        self,
        key:               str,
        phase:             str,
        tx:                str,
        last_valid_height: int,
    ) -> JournalEntry:
        if key not in self._intents:
            raise JournalError("Submission recorded without intent", {"settlement_key": key})
        return self._append(ENTRY_SUBMISSION, {
            "settlement_key":    key,
            "phase":             phase,
            "tx":                tx,
            "last_valid_height": int(last_valid_height),
        })

    def set_watermark(self, signature: str) -> Optional[JournalEntry]:
        if signature == self._watermark:
            return None
        return self._append(ENTRY_WATERMARK, {"signature": signature})

    # ── Reads ────────────────────────────────────────────────

    @property
    def watermark(self) -> Optional[str]:
        """Newest signature whose whole window was processed."""
        return self._watermark

    def is_known(self, key: str) -> bool:
        return key in self._intents

    def state_of(self, key: str) -> Optional[SettlementState]:
        return self._states.get(key)

    def event_for(self, key: str) -> Optional[OrderEvent]:
        intent = self._intents.get(key)
        if intent is None:
            return None
        return OrderEvent.from_dict(intent["event"])

    def pending_payouts(self) -> List[OrderEvent]:
        """Sells whose burn confirmed but whose payout never did."""
        return [
            self.event_for(key)
            for key, state in self._states.items()
            if state is SettlementState.BURNED
        ]

    def submissions(self, key: str, phase: Optional[str] = None) -> List[Dict[str, Any]]:
        """Recorded submissions for key, oldest first."""
        return [
            s for s in self._submissions.get(key, [])
            if phase is None or s["phase"] == phase
        ]

    def failed_tx(self, key: str) -> Optional[str]:
        """Signature of the transaction a failed settlement stopped at, if recorded."""
        if self._states.get(key) is not SettlementState.FAILED:
            return None
        return self._last_phase.get(key, {}).get("tx")

    def unsettled(self) -> List[OrderEvent]:
        """
        Events a restart has to reconcile against the ledger.

        pending   nothing confirmed yet, possibly a submission in flight
        burned    sell whose payout was not confirmed
        failed    only while its failing transaction is recorded and unchecked
        """
        keys = []
        for key, state in self._states.items():
            if state in (SettlementState.PENDING, SettlementState.BURNED):
                keys.append(key)
            elif state is SettlementState.FAILED and self.failed_tx(key):
                keys.append(key)
        return [self.event_for(key) for key in keys]

    def get_stats(self) -> dict:
        type_counts: Dict[str, int] = {}
        for entry in self.entries:
            type_counts[entry.entry_type] = type_counts.get(entry.entry_type, 0) + 1

        state_counts: Dict[str, int] = {}
        for state in self._states.values():
            state_counts[state.value] = state_counts.get(state.value, 0) + 1

        return {
            "total_entries":    len(self.entries),
            "by_type":          type_counts,
            "by_state":         state_counts,
            "watermark":        self._watermark,
            "first_entry_time": self.entries[0].timestamp if self.entries else None,
            "last_entry_time":  self.entries[-1].timestamp if self.entries else None,
        }

    def verify_or_raise(self) -> None:
        """Verify chain linkage and data hashes or raise JournalError"""
        previous = self.GENESIS_HASH
        for position, entry in enumerate(self.entries):
            if entry.index != position:
                raise JournalError(
                    "Index out of sequence",
                    {"position": position, "index": entry.index},
                )
            if entry.previous_hash != previous:
                raise JournalError(
                    f"Chain break at index {position}",
                    {"expected": previous, "got": entry.previous_hash},
                )
            if entry.entry_type not in ENTRY_TYPES:
                raise JournalError(
                    "Unknown entry type",
                    {"index": position, "entry_type": entry.entry_type},
                )
            if canonical_hash(entry.data) != entry.data_hash:
                raise JournalError("Data hash mismatch", {"index": position})
            previous = entry.compute_hash()

    # ── Internals ────────────────────────────────────────────

    def _apply(self, entry: JournalEntry) -> None:
        data = entry.data
        if entry.entry_type == ENTRY_INTENT:
            key = data["settlement_key"]
            self._intents[key] = data
            self._states[key] = SettlementState.PENDING
        elif entry.entry_type == ENTRY_PHASE:
            self._states[data["settlement_key"]] = SettlementState(data["state"])
            self._last_phase[data["settlement_key"]] = data
        elif entry.entry_type == ENTRY_SUBMISSION:
            self._submissions.setdefault(data["settlement_key"], []).append(data)
        elif entry.entry_type == ENTRY_WATERMARK:
            self._watermark = data["signature"]

    def _append(self, entry_type: str, data: Dict[str, Any]) -> JournalEntry:
        entry = JournalEntry(
            index=         len(self.entries),
            previous_hash= self.entries[-1].compute_hash() if self.entries else self.GENESIS_HASH,
            timestamp=     utc_timestamp(),
            entry_type=    entry_type,
            data=          data,
            data_hash=     canonical_hash(data),
        )
        self._write_entry(entry)
        self.entries.append(entry)
        self._apply(entry)
        return entry

    def _write_entry(self, entry: JournalEntry) -> None:
        """Append one line and fsync before the entry counts as recorded"""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                json.dump(entry.to_dict(), f, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise JournalError(f"Failed to write journal entry: {e}") from e

    def _load(self) -> None:
        self.entries = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        self.entries.append(JournalEntry.from_dict(json.loads(line)))
                    except json.JSONDecodeError as e:
                        raise JournalError(f"Invalid JSON at line {line_num}: {e}") from e
                    except (KeyError, TypeError) as e:
                        raise JournalError(f"Malformed entry at line {line_num}: {e}") from e
        except OSError as e:
            raise JournalError(f"Failed to load journal: {e}") from e
        logger.debug("Loaded %d journal entries from %s", len(self.entries), self.path)
