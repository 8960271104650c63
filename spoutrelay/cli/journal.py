"""
spoutrelay/cli/journal.py

spoutrelay journal: verify a settlement journal's hash chain and print
its statistics.

Usage:
    spoutrelay journal <path>                 Human output (default)
    spoutrelay journal <path> --format json   Machine-readable JSON

Exit codes:
    0  Journal valid
    1  Journal corrupt (chain break, data hash mismatch, bad entry)
    2  Error (file missing or unreadable)
"""

import json
import sys
from pathlib import Path

import click

from spoutrelay.core.exceptions import JournalError
from spoutrelay.settlement.journal import SettlementJournal


def _emit(payload: dict, fmt: str) -> None:
    if fmt == "json":
        click.echo(json.dumps({"spoutrelay_journal": payload}, indent=2))
        return
    for label, value in payload.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "-"
        click.echo(f"  {label:<18}  {value}")


@click.command(name="journal")
@click.argument("path", type=click.Path(exists=False))
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
def journal_command(path, fmt) -> None:
    """Verify the settlement journal at PATH."""
    journal_path = Path(path)
    if not journal_path.is_file():
        _emit({"journal": str(journal_path), "error": "file not found", "valid": False}, fmt)
        sys.exit(2)

    try:
        journal = SettlementJournal(journal_path)
    except JournalError as e:
        _emit({"journal": str(journal_path), "error": str(e), "valid": False}, fmt)
        sys.exit(1)

    stats = journal.get_stats()
    pending = journal.pending_payouts()
    _emit({
        "journal":         str(journal_path),
        "valid":           True,
        "total_entries":   stats["total_entries"],
        "by_type":         stats["by_type"],
        "by_state":        stats["by_state"],
        "pending_payouts": len(pending),
        "watermark":       stats["watermark"],
        "first_entry":     stats["first_entry_time"],
        "last_entry":      stats["last_entry_time"],
    }, fmt)
    sys.exit(0)
