"""
Error taxonomy for secure-context.

Unsupported sites and below-threshold scores are outcomes, not errors;
see ``issuance.IssuanceOutcome`` and ``verification.FailureKind``.
"""

from typing import Optional


class SecureContextError(Exception):
    """Base class for all secure-context errors."""


class SignalUnavailableError(SecureContextError):
    """A signal source produced no reading (permission denied, no sensor, ...)."""


class CollectionError(SecureContextError):
    """A signal source failed; fatal for the attempt, not for the loop."""

    def __init__(self, source: str, cause: BaseException):
        self.source = source
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"{source} signal unavailable: {detail}")


class SigningError(SecureContextError):
    """No device key pair is available for signing."""


class ServiceError(SecureContextError):
    """
    The Attestation Service could not be reached or rejected a call.

    ``status_code`` is None for transport failures, so callers can tell
    "the server said no" apart from "the server could not be reached".
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{message} (HTTP {status_code})")

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None


class IssuanceError(ServiceError):
    """Token issuance failed."""


class EnrollmentError(ServiceError):
    """Enrollment artifact generation failed."""


class RevocationError(ServiceError):
    """Server-side device revocation failed."""


class SiteConfigError(SecureContextError):
    """The site registry is malformed or unreadable."""


class ValidationError(SecureContextError):
    """Raised when input validation fails."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")
