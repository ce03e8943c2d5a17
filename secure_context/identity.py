"""
Device Identity Manager

Owns the device-bound ECDSA P-256 key pair: creation, persistence,
signing, public key export, enrollment of additional devices, and
revocation.

The private key never leaves this module. It is written only to the
configured ``KeyStore`` and is excluded from ``repr``, logs, and every
exported structure. All operations that read or mutate the key pair
serialize through a single lock, so enrollment and revocation can never
interleave with an in-flight signature.

Signatures use the IEEE P1363 ``r || s`` encoding (64 bytes), the format
WebCrypto produces, over the UTF-8 bytes of the hex context hash.
"""

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from . import config
from .client import AttestationServiceClient
from .errors import SigningError, ValidationError
from .logging_config import audit_log
from .models import EnrollmentRequest, EnrollmentResponse
from .security import validate_context_hash
from .util import hex_decode, hex_encode, sha256_hex

logger = logging.getLogger(__name__)

ALGORITHM = "ECDSA_P256_SHA256"
_CURVE = ec.SECP256R1()
_COORDINATE_BYTES = 32


@dataclass
class DeviceKeyPair:
    """ECDSA P-256 key pair; ``public_key`` is the raw X9.62 uncompressed point."""
    kid: str
    public_key: bytes
    private_key: ec.EllipticCurvePrivateKey = field(repr=False, compare=False)
    created_at: float = field(default_factory=time.time)
    algorithm: str = ALGORITHM

    def public_key_hex(self) -> str:
        return hex_encode(self.public_key)


@dataclass(frozen=True)
class SignedContext:
    """A context hash signature together with the key that produced it."""
    kid: str
    signature: str
    public_key: str


def _raw_public_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )


def key_id_for(public_key: bytes) -> str:
    """Stable identifier derived from the public key."""
    return "device:" + sha256_hex(public_key)[:16]


def generate_key_pair() -> DeviceKeyPair:
    """Generate a fresh ECDSA P-256 key pair."""
    private_key = ec.generate_private_key(_CURVE)
    public_key = _raw_public_key(private_key)
    return DeviceKeyPair(kid=key_id_for(public_key), public_key=public_key, private_key=private_key)


def sign_context_hash(private_key: ec.EllipticCurvePrivateKey, context_hash: str) -> bytes:
    """Sign the UTF-8 bytes of a context hash; returns ``r || s``."""
    der = private_key.sign(context_hash.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    return r.to_bytes(_COORDINATE_BYTES, "big") + s.to_bytes(_COORDINATE_BYTES, "big")


def verify_signature(
    public_key: Union[bytes, str],
    context_hash: str,
    signature: Union[bytes, str]
) -> bool:
    """
    Verify a context hash signature against an exported public key.

    Args:
        public_key: Raw X9.62 point, bytes or hex
        context_hash: The signed hex context hash
        signature: ``r || s`` signature, bytes or hex

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        if isinstance(public_key, str):
            public_key = hex_decode(public_key)
        if isinstance(signature, str):
            signature = hex_decode(signature)
        if len(signature) != 2 * _COORDINATE_BYTES:
            return False
        r = int.from_bytes(signature[:_COORDINATE_BYTES], "big")
        s = int.from_bytes(signature[_COORDINATE_BYTES:], "big")
        key = ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, public_key)
        key.verify(encode_dss_signature(r, s), context_hash.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, ValueError):
        return False


# ============================================================
# Key Stores
# ============================================================

class KeyStore(ABC):
    """Abstract secure storage for the device key pair."""

    @abstractmethod
    def load(self) -> Optional[DeviceKeyPair]:
        """Return the persisted key pair, or None if none exists."""
        pass

    @abstractmethod
    def save(self, key_pair: DeviceKeyPair) -> None:
        pass

    @abstractmethod
    def erase(self) -> None:
        """Irreversibly remove the persisted key pair."""
        pass


class InMemoryKeyStore(KeyStore):
    """
    In-memory key store for development/testing.

    WARNING: Not persistent across restarts.
    """

    def __init__(self, key_pair: Optional[DeviceKeyPair] = None):
        self._key_pair = key_pair

    def load(self) -> Optional[DeviceKeyPair]:
        return self._key_pair

    def save(self, key_pair: DeviceKeyPair) -> None:
        self._key_pair = key_pair

    def erase(self) -> None:
        self._key_pair = None


class FileKeyStore(KeyStore):
    """
    JSON file key store.

    The private key is stored as PKCS#8 PEM, encrypted when a passphrase
    is configured. The file is created with mode 0600 and replaced
    atomically.
    """

    def __init__(self, path: str, passphrase: Optional[str] = None):
        self._path = Path(path)
        self._passphrase = passphrase.encode("utf-8") if passphrase else None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[DeviceKeyPair]:
        if not self._path.exists():
            return None
        with open(self._path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        private_key = serialization.load_pem_private_key(
            raw["private_key_pem"].encode("ascii"),
            password=self._passphrase,
        )
        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or private_key.curve.name != _CURVE.name:
            raise SigningError(f"{self._path} does not hold a P-256 key")

        public_key = _raw_public_key(private_key)
        if hex_encode(public_key) != raw["public_key_hex"]:
            raise SigningError(f"{self._path} public key does not match its private key")

        return DeviceKeyPair(
            kid=raw["kid"],
            public_key=public_key,
            private_key=private_key,
            created_at=raw.get("created_at", 0.0),
            algorithm=raw.get("algorithm", ALGORITHM),
        )

    def save(self, key_pair: DeviceKeyPair) -> None:
        if self._passphrase:
            encryption = serialization.BestAvailableEncryption(self._passphrase)
        else:
            encryption = serialization.NoEncryption()
        pem = key_pair.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
        record = {
            "kid": key_pair.kid,
            "algorithm": key_pair.algorithm,
            "public_key_hex": key_pair.public_key_hex(),
            "private_key_pem": pem.decode("ascii"),
            "created_at": key_pair.created_at,
        }

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record, f)
        os.replace(tmp, self._path)

    def erase(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass


def get_key_store(path: Optional[str] = None, passphrase: Optional[str] = None) -> KeyStore:
    """Key store configured from the environment."""
    return FileKeyStore(path or config.KEY_STORE_PATH, passphrase or config.KEY_PASSPHRASE or None)


# ============================================================
# Identity Manager
# ============================================================

class DeviceIdentityManager:
    """
    Lifecycle-scoped owner of the device key pair.

    One instance per background process; pass it by reference to the
    issuance client rather than reaching for module state.

    Usage:
        identity = DeviceIdentityManager(get_key_store(), AttestationServiceClient())
        await identity.ensure_key_pair()
        signed = await identity.sign_context(context_hash)
    """

    def __init__(
        self,
        key_store: KeyStore,
        client: AttestationServiceClient,
        attestation_endpoint: Optional[str] = None
    ):
        self._key_store = key_store
        self._client = client
        self._endpoint = attestation_endpoint or config.DEFAULT_ATTESTATION_ENDPOINT
        self._lock = asyncio.Lock()
        self._key_pair: Optional[DeviceKeyPair] = None
        self._revocation_listeners: List[Callable[[], None]] = []

    def _current(self) -> Optional[DeviceKeyPair]:
        if self._key_pair is None:
            self._key_pair = self._key_store.load()
        return self._key_pair

    def _require(self) -> DeviceKeyPair:
        key_pair = self._current()
        if key_pair is None:
            raise SigningError("No device key pair; enroll this device first")
        return key_pair

    @property
    def kid(self) -> Optional[str]:
        key_pair = self._current()
        return key_pair.kid if key_pair else None

    async def ensure_key_pair(self) -> DeviceKeyPair:
        """Load the persisted key pair, generating and persisting one if absent."""
        async with self._lock:
            key_pair = self._current()
            if key_pair is None:
                key_pair = generate_key_pair()
                self._key_store.save(key_pair)
                self._key_pair = key_pair
                logger.info("Generated device key pair %s", key_pair.kid)
            return key_pair

    async def sign(self, context_hash: str) -> str:
        """
        Sign a context hash.

        Returns:
            Hex ``r || s`` signature

        Raises:
            SigningError: If no key pair exists
        """
        return (await self.sign_context(context_hash)).signature

    async def sign_context(self, context_hash: str) -> SignedContext:
        """Sign a context hash and return it with the signing public key."""
        context_hash = validate_context_hash(context_hash)
        async with self._lock:
            key_pair = self._require()
            signature = sign_context_hash(key_pair.private_key, context_hash)
            return SignedContext(
                kid=key_pair.kid,
                signature=hex_encode(signature),
                public_key=key_pair.public_key_hex(),
            )

    def export_public_key(self) -> bytes:
        """Raw X9.62 uncompressed public key for transmission."""
        return self._require().public_key

    def public_key_hex(self) -> str:
        return hex_encode(self.export_public_key())

    async def enroll(self, owner_approval_token: str) -> EnrollmentResponse:
        """
        Request a pairing artifact for enrolling another device against
        this device's public key.
        """
        if not owner_approval_token:
            raise ValidationError("owner_approval_token", "cannot be empty")
        async with self._lock:
            key_pair = self._require()
            enrollment = await self._client.generate_enrollment(
                self._endpoint,
                EnrollmentRequest(
                    public_key=key_pair.public_key_hex(),
                    owner_approval_token=owner_approval_token,
                ),
            )
        audit_log.device_enrolled(key_pair.kid, enrollment.enrollment_url)
        return enrollment

    def add_revocation_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback that erases state derived from this identity."""
        self._revocation_listeners.append(listener)

    def remove_revocation_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._revocation_listeners:
            self._revocation_listeners.remove(listener)

    async def revoke(self, confirm: bool = False) -> None:
        """
        Revoke this device server-side, then erase the local key pair and
        everything derived from it. Destructive and non-reversible.

        Raises:
            ValidationError: If ``confirm`` is not set
            RevocationError: If the service refuses; the local key is kept
        """
        if not confirm:
            raise ValidationError("confirm", "device revocation must be explicitly confirmed")
        async with self._lock:
            key_pair = self._require()
            await self._client.revoke_device(self._endpoint, key_pair.public_key_hex())
            self._key_store.erase()
            self._key_pair = None
        audit_log.device_revoked(key_pair.kid)

        for listener in list(self._revocation_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Revocation listener failed")
