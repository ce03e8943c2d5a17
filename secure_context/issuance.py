"""
Token Issuance Client

Exchanges a signed context hash and its consistency score for a
short-lived attestation token from the site's Attestation Service.

Results are tri-state:
    ISSUED            the service returned a token
    UNSUPPORTED_SITE  no site configuration matches; the token is the
                      null sentinel and callers must not retry
    (raised)          IssuanceError / SigningError
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from . import config
from .client import AttestationServiceClient
from .config import SiteConfig, SiteRegistry
from .identity import DeviceIdentityManager
from .logging_config import audit_log
from .models import IssueTokenRequest, TokenPayload
from .scoring import ConsistencyScore


class IssuanceOutcome(str, Enum):
    ISSUED = "ISSUED"
    UNSUPPORTED_SITE = "UNSUPPORTED_SITE"


@dataclass(frozen=True)
class AttestationToken:
    """
    An issued token. ``token is None`` marks an unsupported site and is
    distinct from failure. Times are epoch seconds.
    """
    token: Optional[str]
    consistency_score: float
    issued_at: float
    expires_at: float
    site: Optional[str] = field(default=None, compare=False)

    @classmethod
    def unsupported(cls, now: float) -> "AttestationToken":
        return cls(token=None, consistency_score=0.0, issued_at=now, expires_at=now)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    def is_usable(self, threshold: Optional[float] = None, now: Optional[float] = None) -> bool:
        """A token is usable only while unexpired and at or above the threshold."""
        threshold = config.CONSISTENCY_THRESHOLD if threshold is None else threshold
        return (
            self.token is not None
            and self.consistency_score >= threshold
            and not self.is_expired(now)
        )

    def to_payload(self) -> TokenPayload:
        return TokenPayload(
            token=self.token,
            consistency_score=self.consistency_score,
            expires_at=self.expires_at if self.token is not None else None,
        )


@dataclass(frozen=True)
class IssuanceResult:
    outcome: IssuanceOutcome
    token: AttestationToken
    site: Optional[SiteConfig] = None

    @property
    def supported(self) -> bool:
        return self.outcome == IssuanceOutcome.ISSUED


class TokenIssuanceClient:
    """
    Per-site token issuance.

    Usage:
        issuer = TokenIssuanceClient(identity, AttestationServiceClient())
        result = await issuer.request_token(page_url, context_hash, score)
        if result.supported and result.token.is_usable():
            ...
    """

    def __init__(
        self,
        identity: DeviceIdentityManager,
        client: AttestationServiceClient,
        registry: Optional[SiteRegistry] = None,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.identity = identity
        self.client = client
        self.registry = registry or config.load_site_registry()
        self.ttl_seconds = config.TOKEN_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock or time.time

    def site_for(self, site_url: str) -> Optional[SiteConfig]:
        return self.registry.lookup(site_url)

    def unsupported(self) -> IssuanceResult:
        return IssuanceResult(IssuanceOutcome.UNSUPPORTED_SITE, AttestationToken.unsupported(self._clock()))

    async def request_token(
        self,
        site_url: str,
        context_hash: str,
        score: Union[float, ConsistencyScore]
    ) -> IssuanceResult:
        """
        Request a token for the site serving ``site_url``.

        Raises:
            IssuanceError: On transport failure or non-2xx response
            SigningError: If the device has no key pair
        """
        consistency_score = score.value if isinstance(score, ConsistencyScore) else float(score)

        site = self.site_for(site_url)
        if site is None:
            return self.unsupported()

        signed = await self.identity.sign_context(context_hash)
        audit_log.token_request(site.domain, context_hash, consistency_score)

        response = await self.client.issue_token(
            site.issuance_endpoint,
            IssueTokenRequest(
                context_hash=context_hash,
                signature=signed.signature,
                consistency_score=consistency_score,
                public_key=signed.public_key,
            ),
        )

        issued_at = self._clock()
        token = AttestationToken(
            token=response.token,
            consistency_score=response.consistency_score,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl_seconds,
            site=site.domain,
        )
        if token.token is not None:
            audit_log.token_issued(site.domain, token.token, token.consistency_score, token.expires_at)
        return IssuanceResult(IssuanceOutcome.ISSUED, token, site)
