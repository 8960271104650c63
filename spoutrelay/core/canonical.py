"""
Spout Relayer: Canonical JSON Encoding, RFC 8785 (JCS)

Journal data hashes and entry chaining go through this module, so a
journal can be re-verified by any other JCS implementation.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib

import jcs


def canonicalize(obj: dict) -> bytes:
    """
    Encode a dict to RFC 8785 canonical JSON bytes.

    Values must already be JSON primitives: journal code stores addresses
    as base58 strings and amounts as ints before they reach this point.
    """
    return jcs.canonicalize(obj)


def canonical_hash(obj: dict) -> str:
    """Lowercase hex SHA-256 of the canonical form (64 characters)."""
    return hashlib.sha256(canonicalize(obj)).hexdigest()
