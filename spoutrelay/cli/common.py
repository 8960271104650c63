"""
Options and helpers shared by commands that need relayer configuration.
"""

import sys
from pathlib import Path
from typing import Optional

import click

from spoutrelay.config import Settings, load_settings
from spoutrelay.core.exceptions import ConfigError
from spoutrelay.core.logs import configure_logging


def settings_options(func):
    """Attach --env-file and --config to a command."""
    func = click.option(
        "--config", "config_file",
        type=click.Path(dir_okay=False),
        default=None,
        help="YAML file with lowercase setting names.",
    )(func)
    func = click.option(
        "--env-file",
        type=click.Path(dir_okay=False),
        default=None,
        help="dotenv file (defaults to ./.env when present).",
    )(func)
    return func


def load_or_exit(
    env_file:       Optional[str],
    config_file:    Optional[str],
    require_signer: bool = True,
) -> Settings:
    """Load settings and configure logging. Exit 2 on configuration errors."""
    try:
        settings = load_settings(
            env_file=       Path(env_file) if env_file else None,
            config_file=    Path(config_file) if config_file else None,
            require_signer= require_signer,
        )
    except ConfigError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)
    configure_logging(settings.log_level, settings.log_format)
    return settings
