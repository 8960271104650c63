"""
spoutrelay/core/crypto.py

Signing identity for relayer transactions.

Every mint / burn / account-create / payout transaction is paid for and
authorized by ONE trusted issuer identity. Settlement code only ever sees
the TransactionSigner interface, so key custody (file, HSM, multi-party)
can change without touching the orchestrator.

Key contracts:
    signer.address          (@property) → Pubkey of the signing key
    signer.sign(message)                → raw 64-byte Ed25519 signature

Keypair formats accepted by Ed25519Signer:
    - Solana CLI keypair file: JSON array of 64 ints (seed || public key)
    - Same JSON array given inline (ISSUER_KEYPAIR environment variable)
    - Raw 32-byte seed
"""

import abc
import json
from pathlib import Path
from typing import Sequence, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from solders.pubkey import Pubkey


class TransactionSigner(abc.ABC):
    """Anything that can authorize a ledger transaction."""

    @property
    @abc.abstractmethod
    def address(self) -> Pubkey:
        """Public address of the signing identity (fee payer)."""

    @abc.abstractmethod
    def sign(self, message: bytes) -> bytes:
        """Sign serialized message bytes. Returns a raw 64-byte signature."""


class Ed25519Signer(TransactionSigner):
    """
    In-process Ed25519 signer.

    Public surface:
        Ed25519Signer.generate()                 → new random key
        Ed25519Signer.from_seed(seed)            → load from raw 32-byte seed
        Ed25519Signer.from_keypair_bytes(raw)    → 64-byte seed || pubkey
        Ed25519Signer.from_json(text)            → JSON array form
        Ed25519Signer.from_file(path)            → Solana CLI keypair file

        signer.address                (@property) → Pubkey
        signer.sign(message)                      → 64 raw bytes
        signer.keypair_bytes()                    → 64 bytes, never log
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key: Ed25519PrivateKey = private_key
        self._public_key:  Ed25519PublicKey  = private_key.public_key()
        # Cached, never recomputed
        self._address: Pubkey = Pubkey(
            self._public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        )

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        """Generate a new random Ed25519 key pair."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Ed25519Signer":
        """
        Load a key from a raw 32-byte seed.
        Raises ValueError if seed is not exactly 32 bytes.
        """
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(bytes(seed)))

    @classmethod
    def from_keypair_bytes(cls, raw: Union[bytes, Sequence[int]]) -> "Ed25519Signer":
        """
        Load from the 64-byte (seed || public key) keypair layout.
        Raises ValueError if the embedded public key does not match the seed.
        """
        raw = bytes(raw)
        if len(raw) != 64:
            raise ValueError(f"Keypair must be 64 bytes, got {len(raw)}")
        signer = cls.from_seed(raw[:32])
        if bytes(signer.address) != raw[32:]:
            raise ValueError("Keypair public key does not match its secret seed")
        return signer

    @classmethod
    def from_json(cls, text: str) -> "Ed25519Signer":
        """Load from a JSON array of 64 integers."""
        try:
            values = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Keypair is not valid JSON: {exc}") from exc
        if not isinstance(values, list) or not all(
            isinstance(v, int) and 0 <= v <= 255 for v in values
        ):
            raise ValueError("Keypair JSON must be an array of byte values")
        return cls.from_keypair_bytes(values)

    @classmethod
    def from_file(cls, path: Path) -> "Ed25519Signer":
        """
        Load a Solana CLI keypair file.
        Raises FileNotFoundError if path does not exist.
        Raises ValueError if the file is not a valid keypair.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Keypair file not found: {path}")
        try:
            return cls.from_json(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise ValueError(f"Failed to load keypair from {path}: {exc}") from exc

    # ── Identity ──────────────────────────────────────────────

    @property
    def address(self) -> Pubkey:
        return self._address

    # ── Signing ───────────────────────────────────────────────

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    # ── Persistence ───────────────────────────────────────────

    def keypair_bytes(self) -> bytes:
        """
        Return seed || public key (64 bytes), the Solana CLI layout.
        Use only for secure backup. Never log or transmit.
        """
        seed = self._private_key.private_bytes(
            encoding=             Encoding.Raw,
            format=               PrivateFormat.Raw,
            encryption_algorithm= NoEncryption(),
        )
        return seed + bytes(self._address)

    def __repr__(self) -> str:
        return f"Ed25519Signer(address={str(self._address)[:8]}...)"
