"""
Context Hasher

All context hashes use SHA-256 over the canonical JSON of the snapshot,
as 64 lowercase hex characters. The Attestation Service does not
recompute the hash; it trusts the signed value as an opaque blob, so the
encoding must be reproducible byte for byte.
"""

import hmac

from .canonicalization import canonicalize
from .context import ContextSnapshot
from .util import sha256_hex

CONTEXT_HASH_LENGTH = 64


def context_hash(snapshot: ContextSnapshot) -> str:
    """
    Compute the context hash for a snapshot.

    context_hash = SHA-256(CJE(snapshot))
    """
    return sha256_hex(canonicalize(snapshot.to_dict()))


def verify_context_hash(declared_hash: str, snapshot: ContextSnapshot) -> bool:
    """Recompute the hash of a snapshot and compare in constant time."""
    return hmac.compare_digest(declared_hash.lower(), context_hash(snapshot))
