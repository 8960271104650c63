"""
spoutrelay/cli/run.py

spoutrelay run / spoutrelay recover

Usage:
    spoutrelay run                          Recovery sweep, then poll forever
    spoutrelay run --once                   Recovery sweep, then one tick
    spoutrelay run --env-file prod.env      Explicit dotenv file
    spoutrelay recover                      Recovery sweep only

Exit codes:
    0  Clean shutdown
    1  Run finished with failed settlements (--once / recover only),
       or the journal failed verification
    2  Configuration error
"""

import asyncio
import json
import logging
import signal
import sys

import click

from spoutrelay.cli.common import load_or_exit, settings_options
from spoutrelay.config import Settings
from spoutrelay.core.exceptions import JournalError
from spoutrelay.core.models import SettlementStatus
from spoutrelay.runtime.context import RelayerContext

logger = logging.getLogger(__name__)


def _install_stop_handlers(ctx: RelayerContext) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, ctx.watcher.stop)
        except NotImplementedError:
            # Windows event loops: Ctrl+C still cancels asyncio.run()
            logger.debug("Signal handlers unavailable on this platform")


async def _run(settings: Settings, once: bool) -> int:
    ctx = RelayerContext.from_settings(settings)
    logger.info("Starting relayer", extra={"report": settings.describe()})
    try:
        await ctx.recover()
        if once:
            report = await ctx.watcher.tick()
            click.echo(json.dumps(report.to_dict(), indent=2))
            return 1 if report.failed else 0

        _install_stop_handlers(ctx)
        await ctx.watcher.run()
        return 0
    finally:
        await ctx.aclose()


async def _recover(settings: Settings) -> int:
    ctx = RelayerContext.from_settings(settings)
    try:
        results = await ctx.recover()
    finally:
        await ctx.aclose()

    for result in results:
        click.echo(json.dumps({
            "settlement_key": result.settlement_key,
            "status":         result.status.value,
            "transactions":   result.transactions,
            "error":          result.error,
        }))
    return 0 if all(r.status is SettlementStatus.SETTLED for r in results) else 1


def _exit_with(coro) -> None:
    try:
        code = asyncio.run(coro)
    except JournalError as e:
        click.echo(f"ERROR: settlement journal unusable: {e}", err=True)
        sys.exit(1)
    sys.exit(code)


@click.command(name="run")
@settings_options
@click.option("--once", is_flag=True, default=False, help="Run a single tick and exit.")
def run_command(env_file, config_file, once) -> None:
    """Poll the order program and settle new orders."""
    settings = load_or_exit(env_file, config_file)
    _exit_with(_run(settings, once))


@click.command(name="recover")
@settings_options
def recover_command(env_file, config_file) -> None:
    """Retry payouts for sells journalled as burned."""
    settings = load_or_exit(env_file, config_file)
    if settings.journal_path is None:
        click.echo("ERROR: recover needs JOURNAL_PATH", err=True)
        sys.exit(2)
    _exit_with(_recover(settings))
