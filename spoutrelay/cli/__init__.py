"""
spoutrelay/cli/__init__.py

Spout relayer CLI, root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    spoutrelay = "spoutrelay.cli:cli"

Adding a new command:
    1. Create spoutrelay/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

import click

from spoutrelay.cli.derive import derive_command
from spoutrelay.cli.journal import journal_command
from spoutrelay.cli.run import recover_command, run_command


@click.group()
@click.version_option(package_name="spoutrelay")
def cli() -> None:
    """
    Spout settlement relayer.

    \b
    Commands:
      run       Poll for order events and settle them.
      recover   Reconcile unsettled journal entries with the ledger.
      derive    Print the derived addresses for a holder.
      journal   Verify a settlement journal and print its stats.

    \b
    Quick start:
      spoutrelay run --env-file .env
      spoutrelay run --once
      spoutrelay derive 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin
      spoutrelay journal relayer.journal.jsonl --format json
    """
    pass


cli.add_command(run_command)
cli.add_command(recover_command)
cli.add_command(derive_command)
cli.add_command(journal_command)
