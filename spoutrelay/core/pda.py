"""
spoutrelay/core/pda.py

Program-derived address (PDA) derivation.

THESE SEED LAYOUTS ARE A CROSS-SYSTEM CONTRACT.
They are owned by the order program, the attestation program and the
associated token program. A single seed out of place produces a valid-looking
address that every downstream transaction will be rejected for.

═══════════════════════════════════════════════════════════════════
RULE: create_program_address
    hash = SHA-256(seed_0 || ... || seed_n || program_id || "ProgramDerivedAddress")
    valid iff hash is NOT an ed25519 curve point
    at most 16 seeds, each at most 32 bytes

RULE: find_program_address
    first bump in 255, 254, ..., 0 for which
    create_program_address(seeds + [bytes([bump])]) is valid

SEEDS
    attestation        [b"attestation", credential, schema, holder]   attestation program
    program authority  [b"program_authority", mint]                   order/token program
    associated account [owner, token_program, mint]                   associated token program
    schema             [b"schema", schema_id]                         attestation program
    credential         [authority, name]                              attestation program
═══════════════════════════════════════════════════════════════════

Bump search and the curve test are solders' (Pubkey.find_program_address,
Pubkey.is_on_curve). Seed limits are checked here first so a bad seed list
surfaces as AddressDerivationError.

Everything here is pure: no I/O, no clock, no randomness.
"""

import hashlib
from typing import List, Optional, Sequence, Tuple, Union

from solders.pubkey import Pubkey

from spoutrelay.core.address import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SAS_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from spoutrelay.core.exceptions import AddressDerivationError

MAX_SEEDS       = 16
MAX_SEED_LENGTH = 32
PDA_MARKER      = b"ProgramDerivedAddress"

ATTESTATION_SEED       = b"attestation"
PROGRAM_AUTHORITY_SEED = b"program_authority"
SCHEMA_SEED            = b"schema"

Seed = Union[bytes, bytearray, Pubkey]


class OnCurveAddressError(AddressDerivationError):
    """The seed list hashes to a curve point; try the next bump."""
    pass


def _seed_list(seeds: Sequence[Seed], limit: int) -> List[bytes]:
    if len(seeds) > limit:
        raise AddressDerivationError(
            "Too many seeds", {"count": len(seeds), "max": limit}
        )
    raw_seeds = []
    for position, seed in enumerate(seeds):
        if not isinstance(seed, (bytes, bytearray, Pubkey)):
            raise AddressDerivationError(
                "Seeds must be bytes or Pubkey",
                {"type": type(seed).__name__},
            )
        raw = bytes(seed)
        if len(raw) > MAX_SEED_LENGTH:
            raise AddressDerivationError(
                "Seed exceeds maximum length",
                {"position": position, "length": len(raw), "max": MAX_SEED_LENGTH},
            )
        raw_seeds.append(raw)
    return raw_seeds


def create_program_address(seeds: Sequence[Seed], program_id: Pubkey) -> Pubkey:
    """
    Compute the address for an exact seed list (bump already included).

    Raises AddressDerivationError if the seed list is invalid and
    OnCurveAddressError if the resulting hash lands on the curve.
    """
    hasher = hashlib.sha256()
    for raw in _seed_list(seeds, MAX_SEEDS):
        hasher.update(raw)
    hasher.update(bytes(program_id))
    hasher.update(PDA_MARKER)

    address = Pubkey(hasher.digest())
    if address.is_on_curve():
        raise OnCurveAddressError("Derived address is on the ed25519 curve")
    return address


def find_program_address(seeds: Sequence[Seed], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """
    Search bumps from 255 down to 0 and return (address, bump) for the first
    off-curve result.
    """
    # The bump occupies one seed slot
    raw_seeds = _seed_list(seeds, MAX_SEEDS - 1)
    return Pubkey.find_program_address(raw_seeds, program_id)


# ── Contract-specific derivations ─────────────────────────────

def derive_attestation_address(
    credential:          Pubkey,
    schema:              Pubkey,
    holder:              Pubkey,
    attestation_program: Pubkey = SAS_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    """Attestation record for (credential, schema, holder), in that order."""
    return find_program_address(
        [ATTESTATION_SEED, credential, schema, holder],
        attestation_program,
    )


def derive_program_authority_address(mint: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Mint-scoped authority the order program signs mint/burn CPIs with."""
    return find_program_address([PROGRAM_AUTHORITY_SEED, mint], program_id)


def derive_associated_token_address(
    owner:         Pubkey,
    mint:          Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """The canonical token account for (owner, mint)."""
    address, _ = find_program_address(
        [owner, token_program, mint],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def derive_schema_address(
    schema_id:           str,
    attestation_program: Pubkey = SAS_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    return find_program_address(
        [SCHEMA_SEED, schema_id.encode("utf-8")],
        attestation_program,
    )


def derive_credential_address(
    authority:           Pubkey,
    name:                str,
    attestation_program: Pubkey = SAS_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    # One credential per authority
    return find_program_address(
        [authority, name.encode("utf-8")],
        attestation_program,
    )


class AddressDeriver:
    """
    Derivations bound to one deployment's fixed addresses.

    Holds the credential/schema pair and the program ids so callers only
    pass the per-event inputs (holder, mint, owner).
    """

    def __init__(
        self,
        credential:          Pubkey,
        schema:              Pubkey,
        authority_program:   Pubkey,
        attestation_program: Pubkey = SAS_PROGRAM_ID,
        token_program:       Pubkey = TOKEN_PROGRAM_ID,
    ):
        self.credential          = credential
        self.schema              = schema
        self.authority_program   = authority_program
        self.attestation_program = attestation_program
        self.token_program       = token_program

    def attestation(self, holder: Pubkey) -> Pubkey:
        address, _ = derive_attestation_address(
            self.credential, self.schema, holder, self.attestation_program
        )
        return address

    def program_authority(self, mint: Pubkey) -> Pubkey:
        address, _ = derive_program_authority_address(mint, self.authority_program)
        return address

    def associated_account(
        self,
        owner:         Pubkey,
        mint:          Pubkey,
        token_program: Optional[Pubkey] = None,
    ) -> Pubkey:
        return derive_associated_token_address(
            owner, mint, token_program or self.token_program
        )
