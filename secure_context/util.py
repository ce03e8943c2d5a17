"""
Utility functions for secure-context.

Provides hashing, encoding, and time utilities.
"""

import hashlib
import time
from typing import Union


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def now_ms() -> int:
    """Get current Unix time in milliseconds."""
    return int(time.time() * 1000)


def hex_encode(b: bytes) -> str:
    """Encode bytes as lowercase hex."""
    return b.hex()


def hex_decode(s: str) -> bytes:
    """Decode a hex string to bytes."""
    return bytes.fromhex(s)


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
