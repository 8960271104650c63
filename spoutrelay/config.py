"""
spoutrelay/config.py

Relayer configuration.

Sources, lowest precedence first:
    1. YAML file          (--config)   keys are lowercase setting names
    2. .env file          (--env-file, or ./.env when present)
    3. process environment

Required keys:
    ORDERS_PROGRAM_ID     program emitting order events; receives mint/burn
    SPOUT_PROGRAM_ID      program the mint authority PDA is derived under
    CONFIG_PDA            order program config account
    LQD_PUBKEY            asset mint
    USDC_MINT             stable-asset mint used for payouts
    CREDENTIAL_PDA        attestation credential
    SCHEMA_PDA            attestation schema
    SAS_PROGRAM_ID        attestation program
    ISSUER_KEYPAIR        JSON array of 64 bytes
      or ISSUER_KEYPAIR_PATH   Solana CLI keypair file

Anything missing is reported in one ConfigError listing every missing key.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import dotenv_values
from solders.pubkey import Pubkey

from spoutrelay.core.address import TOKEN_PROGRAM_ID, parse_address
from spoutrelay.core.crypto import Ed25519Signer, TransactionSigner
from spoutrelay.core.exceptions import ConfigError
from spoutrelay.core.logs import LOG_FORMATS
from spoutrelay.events.decoder import FieldSchema
from spoutrelay.ledger.rpc import COMMITMENT_LEVELS, DEFAULT_RPC_URL

REQUIRED_ADDRESS_KEYS = (
    "ORDERS_PROGRAM_ID",
    "SPOUT_PROGRAM_ID",
    "CONFIG_PDA",
    "LQD_PUBKEY",
    "USDC_MINT",
    "CREDENTIAL_PDA",
    "SCHEMA_PDA",
    "SAS_PROGRAM_ID",
)

OPTIONAL_KEYS = (
    "ISSUER_KEYPAIR",
    "ISSUER_KEYPAIR_PATH",
    "SOLANA_RPC_URL",
    "TOKEN_PROGRAM_ID",
    "USDC_TOKEN_PROGRAM_ID",
    "USDC_DECIMALS",
    "POLL_INTERVAL_SECONDS",
    "LOOKBACK_LIMIT",
    "MAX_PAGES",
    "COMMITMENT",
    "RPC_TIMEOUT_SECONDS",
    "JOURNAL_PATH",
    "EVENT_SCHEMA",
    "LOG_LEVEL",
    "LOG_FORMAT",
)

KNOWN_KEYS = REQUIRED_ADDRESS_KEYS + OPTIONAL_KEYS

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass
class Settings:
    orders_program_id:     Pubkey
    spout_program_id:      Pubkey
    config_pda:            Pubkey
    asset_mint:            Pubkey
    usdc_mint:             Pubkey
    credential_pda:        Pubkey
    schema_pda:            Pubkey
    sas_program_id:        Pubkey
    signer:                Optional[TransactionSigner] = None
    rpc_url:               str = DEFAULT_RPC_URL
    token_program_id:      Pubkey = TOKEN_PROGRAM_ID
    usdc_token_program_id: Pubkey = TOKEN_PROGRAM_ID
    usdc_decimals:         int = 6
    poll_interval:         float = 15.0
    lookback_limit:        int = 5
    max_pages:             int = 10
    commitment:            str = "confirmed"
    rpc_timeout:           float = 30.0
    journal_path:          Optional[Path] = None
    event_schema:          FieldSchema = FieldSchema.TOLERANT
    log_level:             str = "INFO"
    log_format:            str = "text"
    sources:               List[str] = field(default_factory=list)

    def describe(self) -> Dict[str, Any]:
        """Loggable view. Never includes key material."""
        return {
            "rpc_url":           self.rpc_url,
            "orders_program_id": str(self.orders_program_id),
            "asset_mint":        str(self.asset_mint),
            "usdc_mint":         str(self.usdc_mint),
            "issuer":            str(self.signer.address) if self.signer else None,
            "poll_interval":     self.poll_interval,
            "lookback_limit":    self.lookback_limit,
            "commitment":        self.commitment,
            "journal_path":      str(self.journal_path) if self.journal_path else None,
            "event_schema":      self.event_schema.value,
            "sources":           self.sources,
        }


def _read_yaml(path: Path) -> Dict[str, str]:
    path = Path(path)
    if not path.exists():
        raise ConfigError("Config file not found", {"path": str(path)})
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}", {"path": str(path)}) from e
    if not isinstance(loaded, dict):
        raise ConfigError("Config file must contain a mapping", {"path": str(path)})
    return {str(k).upper(): v for k, v in loaded.items() if v is not None}


def _collect(
    env_file:    Optional[Path],
    config_file: Optional[Path],
    environ:     Mapping[str, str],
) -> Tuple[Dict[str, Any], List[str]]:
    raw: Dict[str, Any] = {}
    sources: List[str] = []

    if config_file is not None:
        raw.update(_read_yaml(config_file))
        sources.append(str(config_file))

    if env_file is None and Path(".env").exists():
        env_file = Path(".env")
    if env_file is not None:
        if not Path(env_file).exists():
            raise ConfigError("Env file not found", {"path": str(env_file)})
        raw.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        sources.append(str(env_file))

    from_env = {k: environ[k] for k in KNOWN_KEYS if environ.get(k) not in (None, "")}
    if from_env:
        raw.update(from_env)
        sources.append("environment")

    return raw, sources


class _Parser:
    """Accumulates problems so every bad key is reported at once."""

    def __init__(self, raw: Mapping[str, Any]):
        self.raw = raw
        self.missing: List[str] = []
        self.invalid: Dict[str, str] = {}

    def _get(self, key: str) -> Optional[str]:
        value = self.raw.get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def address(self, key: str, default: Optional[Pubkey] = None) -> Optional[Pubkey]:
        text = self._get(key)
        if text is None:
            if default is None:
                self.missing.append(key)
            return default
        try:
            return parse_address(text)
        except ValueError as e:
            self.invalid[key] = str(e)
            return default

    def integer(self, key: str, default: int, minimum: int = 0) -> int:
        text = self._get(key)
        if text is None:
            return default
        try:
            value = int(text)
        except ValueError:
            self.invalid[key] = f"not an integer: {text!r}"
            return default
        if value < minimum:
            self.invalid[key] = f"must be >= {minimum}"
            return default
        return value

    def number(self, key: str, default: float) -> float:
        text = self._get(key)
        if text is None:
            return default
        try:
            value = float(text)
        except ValueError:
            self.invalid[key] = f"not a number: {text!r}"
            return default
        if value <= 0:
            self.invalid[key] = "must be positive"
            return default
        return value

    def choice(self, key: str, default: str, choices) -> str:
        text = self._get(key)
        if text is None:
            return default
        text = text.lower()
        if text not in choices:
            self.invalid[key] = f"expected one of {', '.join(choices)}"
            return default
        return text

    def text(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._get(key)
        return value if value is not None else default


def _load_signer(parser: _Parser, required: bool) -> Optional[TransactionSigner]:
    inline = parser.text("ISSUER_KEYPAIR")
    path   = parser.text("ISSUER_KEYPAIR_PATH")
    try:
        if inline:
            return Ed25519Signer.from_json(inline)
        if path:
            return Ed25519Signer.from_file(Path(path).expanduser())
    except FileNotFoundError as e:
        parser.invalid["ISSUER_KEYPAIR_PATH"] = str(e)
        return None
    except ValueError as e:
        parser.invalid["ISSUER_KEYPAIR" if inline else "ISSUER_KEYPAIR_PATH"] = str(e)
        return None
    if required:
        parser.missing.append("ISSUER_KEYPAIR")
    return None


def load_settings(
    env_file:       Optional[Path] = None,
    config_file:    Optional[Path] = None,
    environ:        Optional[Mapping[str, str]] = None,
    require_signer: bool = True,
) -> Settings:
    """
    Build Settings from YAML, .env and the environment.

    Raises ConfigError naming every missing or malformed key.
    """
    raw, sources = _collect(env_file, config_file, os.environ if environ is None else environ)
    p = _Parser(raw)

    addresses = {key: p.address(key) for key in REQUIRED_ADDRESS_KEYS}
    signer = _load_signer(p, required=require_signer)

    journal = p.text("JOURNAL_PATH")
    settings_kwargs = dict(
        signer=                signer,
        rpc_url=               p.text("SOLANA_RPC_URL", DEFAULT_RPC_URL),
        token_program_id=      p.address("TOKEN_PROGRAM_ID", TOKEN_PROGRAM_ID),
        usdc_token_program_id= p.address("USDC_TOKEN_PROGRAM_ID", TOKEN_PROGRAM_ID),
        usdc_decimals=         p.integer("USDC_DECIMALS", 6),
        poll_interval=         p.number("POLL_INTERVAL_SECONDS", 15.0),
        lookback_limit=        p.integer("LOOKBACK_LIMIT", 5, minimum=1),
        max_pages=             p.integer("MAX_PAGES", 10, minimum=1),
        commitment=            p.choice("COMMITMENT", "confirmed", COMMITMENT_LEVELS),
        rpc_timeout=           p.number("RPC_TIMEOUT_SECONDS", 30.0),
        journal_path=          Path(journal).expanduser() if journal else None,
        event_schema=          FieldSchema(p.choice(
                                   "EVENT_SCHEMA", FieldSchema.TOLERANT.value,
                                   tuple(s.value for s in FieldSchema))),
        log_level=             p.choice("LOG_LEVEL", "info", LOG_LEVELS).upper(),
        log_format=            p.choice("LOG_FORMAT", "text", LOG_FORMATS),
    )

    if settings_kwargs["usdc_decimals"] > 255:
        p.invalid["USDC_DECIMALS"] = "must be <= 255"

    if p.missing or p.invalid:
        details: Dict[str, Any] = {}
        if p.missing:
            details["missing"] = ",".join(p.missing)
        for key, problem in p.invalid.items():
            details[key] = problem
        raise ConfigError("Invalid relayer configuration", details)

    return Settings(
        orders_program_id= addresses["ORDERS_PROGRAM_ID"],
        spout_program_id=  addresses["SPOUT_PROGRAM_ID"],
        config_pda=        addresses["CONFIG_PDA"],
        asset_mint=        addresses["LQD_PUBKEY"],
        usdc_mint=         addresses["USDC_MINT"],
        credential_pda=    addresses["CREDENTIAL_PDA"],
        schema_pda=        addresses["SCHEMA_PDA"],
        sas_program_id=    addresses["SAS_PROGRAM_ID"],
        sources=           sources,
        **settings_kwargs,
    )
