"""
spoutrelay/cli/derive.py

spoutrelay derive: print every address the relayer would derive for a
holder, using the configured deployment. No network access.
"""

import json
import sys

import click

from spoutrelay.cli.common import load_or_exit, settings_options
from spoutrelay.core.address import parse_address
from spoutrelay.core.pda import (
    derive_associated_token_address,
    derive_attestation_address,
    derive_program_authority_address,
)


@click.command(name="derive")
@click.argument("holder")
@settings_options
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
def derive_command(holder, env_file, config_file, fmt) -> None:
    """Show attestation, authority and associated accounts for HOLDER."""
    try:
        holder_address = parse_address(holder)
    except ValueError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)

    s = load_or_exit(env_file, config_file, require_signer=False)

    attestation, attestation_bump = derive_attestation_address(
        s.credential_pda, s.schema_pda, holder_address, s.sas_program_id
    )
    authority, authority_bump = derive_program_authority_address(
        s.asset_mint, s.spout_program_id
    )
    rows = {
        "holder":               str(holder_address),
        "attestation":          str(attestation),
        "attestation_bump":     attestation_bump,
        "program_authority":    str(authority),
        "program_authority_bump": authority_bump,
        "asset_account":        str(derive_associated_token_address(
                                    holder_address, s.asset_mint, s.token_program_id)),
        "usdc_account":         str(derive_associated_token_address(
                                    holder_address, s.usdc_mint, s.usdc_token_program_id)),
    }

    if fmt == "json":
        click.echo(json.dumps(rows, indent=2))
        return
    for label, value in rows.items():
        click.echo(f"  {label:<24}  {value}")
