"""
secure-context: in-store context attestation

Version: 1.0.0

Attests that a client is physically present in a retail location before
granting it a short-lived, device-signed token for that location's
backend API.

Pipeline:
    Signal Sources -> Context Collector -> {Consistency Scorer, Context Hasher}
        -> Device Identity Manager (ECDSA P-256 signature)
        -> Token Issuance Client -> Verification Loop -> Request Interceptor

Usage:
    from secure_context import AttestationRuntime

    runtime = AttestationRuntime.from_config()
    await runtime.identity.ensure_key_pair()

    loop = runtime.loop_for("tab-1")
    loop.subscribe(lambda event: print(event.to_dict()))
    loop.start("https://www.walmart.com/store/5260")

    session = requests.Session()
    session.auth = runtime.interceptor_for("tab-1").auth()
    session.get("https://api.walmart.com/secure-context/orders")
"""

__version__ = "1.0.0"

# Signals and snapshots
from .signals import (
    SignalKind,
    SignalReading,
    SignalSource,
    SignalSources,
    CallableSignalSource,
    StaticLocationSource,
    StaticNetworkFingerprintSource,
    StaticMotionSource,
    StaticProximityBeaconSource,
)
from .context import ContextSnapshot
from .collector import ContextCollector

# Scoring and hashing
from .scoring import ConsistencyScore, ConsistencyScorer, ConsistencySubScores, score
from .canonicalization import canonicalize, canonicalize_str
from .hashing import context_hash, verify_context_hash

# Identity
from .identity import (
    DeviceIdentityManager,
    DeviceKeyPair,
    FileKeyStore,
    InMemoryKeyStore,
    KeyStore,
    SignedContext,
    generate_key_pair,
    verify_signature,
)

# Issuance and verification
from .client import AttestationServiceClient
from .issuance import AttestationToken, IssuanceOutcome, IssuanceResult, TokenIssuanceClient
from .attestation import ContextAttestor
from .verification import (
    FailureKind,
    StatusEvent,
    TokenEvent,
    VerificationLoop,
    VerificationState,
    VerificationStatus,
)
from .interceptor import ApiPattern, AttestationAuth, RequestInterceptor
from .runtime import AttestationRuntime

# Configuration and errors
from .config import SiteConfig, SiteRegistry, load_site_registry
from .errors import (
    CollectionError,
    EnrollmentError,
    IssuanceError,
    RevocationError,
    SecureContextError,
    ServiceError,
    SignalUnavailableError,
    SigningError,
    SiteConfigError,
    ValidationError,
)

__all__ = [
    # Signals
    "SignalKind",
    "SignalReading",
    "SignalSource",
    "SignalSources",
    "CallableSignalSource",
    "StaticLocationSource",
    "StaticNetworkFingerprintSource",
    "StaticMotionSource",
    "StaticProximityBeaconSource",
    "ContextSnapshot",
    "ContextCollector",

    # Scoring and hashing
    "ConsistencyScore",
    "ConsistencyScorer",
    "ConsistencySubScores",
    "score",
    "canonicalize",
    "canonicalize_str",
    "context_hash",
    "verify_context_hash",

    # Identity
    "DeviceIdentityManager",
    "DeviceKeyPair",
    "FileKeyStore",
    "InMemoryKeyStore",
    "KeyStore",
    "SignedContext",
    "generate_key_pair",
    "verify_signature",

    # Issuance and verification
    "AttestationServiceClient",
    "AttestationToken",
    "IssuanceOutcome",
    "IssuanceResult",
    "TokenIssuanceClient",
    "ContextAttestor",
    "FailureKind",
    "StatusEvent",
    "TokenEvent",
    "VerificationLoop",
    "VerificationState",
    "VerificationStatus",
    "ApiPattern",
    "AttestationAuth",
    "RequestInterceptor",
    "AttestationRuntime",

    # Configuration and errors
    "SiteConfig",
    "SiteRegistry",
    "load_site_registry",
    "CollectionError",
    "EnrollmentError",
    "IssuanceError",
    "RevocationError",
    "SecureContextError",
    "ServiceError",
    "SignalUnavailableError",
    "SigningError",
    "SiteConfigError",
    "ValidationError",
]
