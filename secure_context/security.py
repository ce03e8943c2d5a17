"""
Security module for secure-context.

Provides input validation and log sanitization.
"""

import re
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlsplit

from .errors import ValidationError
from .util import mask_sensitive


# ============================================================
# Input Validation
# ============================================================

HEX_PATTERN = re.compile(r'^[a-fA-F0-9]+$')

# X9.62 uncompressed P-256 point: 0x04 || X (32 bytes) || Y (32 bytes)
PUBLIC_KEY_HEX_LENGTH = 130


def validate_hex(value: str, field_name: str, expected_length: Optional[int] = None) -> str:
    """
    Validate that a string is valid hexadecimal.

    Returns:
        The validated (lowercased) hex string

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.lower().strip()

    if not value:
        raise ValidationError(field_name, "cannot be empty")

    if not HEX_PATTERN.match(value):
        raise ValidationError(field_name, "must be valid hexadecimal")

    if expected_length and len(value) != expected_length:
        raise ValidationError(field_name, f"must be {expected_length} characters")

    return value


def validate_context_hash(value: str) -> str:
    """Validate a context hash (64 hex characters)."""
    return validate_hex(value, "context_hash", expected_length=64)


def validate_public_key_hex(value: str) -> str:
    """Validate a raw uncompressed P-256 public key in hex."""
    value = validate_hex(value, "public_key", expected_length=PUBLIC_KEY_HEX_LENGTH)
    if not value.startswith("04"):
        raise ValidationError("public_key", "must be an uncompressed point")
    return value


def validate_site_url(value: str, field_name: str = "url") -> str:
    """
    Validate an absolute http(s) URL with a host.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, "must be a non-empty string")
    parts = urlsplit(value.strip())
    if parts.scheme not in ("http", "https"):
        raise ValidationError(field_name, "must be an http(s) URL")
    if not parts.hostname:
        raise ValidationError(field_name, "must include a host")
    return value.strip()


# ============================================================
# Audit Logging Helpers
# ============================================================

# Wire and record fields whose values never reach logs in full
SENSITIVE_FIELDS = frozenset({
    "token",
    "signature",
    "enrollmentToken",
    "enrollment_token",
    "ownerApprovalToken",
    "owner_approval_token",
    "private_key",
    "private_key_pem",
})


def _sanitize_value(value: Any, sensitive_fields: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return sanitize_for_logging(value, sensitive_fields)
    if isinstance(value, list):
        return [_sanitize_value(item, sensitive_fields) for item in value]
    return value


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    Copy a request or response body with sensitive values masked.

    Strings keep their last four characters; anything else is replaced
    outright. Nested objects and lists are sanitized recursively.
    """
    fields = SENSITIVE_FIELDS if sensitive_fields is None else frozenset(sensitive_fields)
    sanitized = {}
    for key, value in data.items():
        if key not in fields:
            sanitized[key] = _sanitize_value(value, fields)
        elif isinstance(value, str) and value:
            sanitized[key] = mask_sensitive(value)
        else:
            sanitized[key] = "[REDACTED]"
    return sanitized
