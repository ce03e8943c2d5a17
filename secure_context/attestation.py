"""
Context Attestation

One attestation attempt end to end:

    Signal Sources -> Collector -> {Scorer, Hasher} -> Identity (sign)
        -> Issuance Client -> AttestationToken

``ContextAttestor.verify_context`` is the ``VERIFY_CONTEXT`` handler the
page layer calls.
"""

import logging

from . import config
from .collector import ContextCollector
from .errors import CollectionError, IssuanceError, SecureContextError, SigningError
from .hashing import context_hash
from .issuance import IssuanceResult, TokenIssuanceClient
from .models import VerifyContextResponse
from .scoring import ConsistencyScorer

logger = logging.getLogger(__name__)


def failure_kind_for(error: BaseException) -> str:
    """Classify an attestation error for status events and responses."""
    if isinstance(error, CollectionError):
        return "COLLECTION_ERROR"
    if isinstance(error, SigningError):
        return "SIGNING_ERROR"
    if isinstance(error, IssuanceError):
        return "ISSUANCE_ERROR" if error.is_transport_error else "TOKEN_REJECTED"
    return "UNEXPECTED_ERROR"


class ContextAttestor:
    """
    Runs collect -> score -> hash -> issue for one site URL.

    Usage:
        attestor = ContextAttestor(collector, ConsistencyScorer(), issuer)
        result = await attestor.attest("https://www.walmart.com/store/42")
    """

    def __init__(
        self,
        collector: ContextCollector,
        scorer: ConsistencyScorer,
        issuer: TokenIssuanceClient
    ):
        self.collector = collector
        self.scorer = scorer
        self.issuer = issuer

    async def attest(self, site_url: str) -> IssuanceResult:
        """
        Attest the current context for ``site_url``.

        Unsupported sites short-circuit before any signal is read.

        Raises:
            CollectionError, SigningError, IssuanceError
        """
        if self.issuer.site_for(site_url) is None:
            logger.info("Context verification skipped: unsupported site %s", config.page_host(site_url))
            return self.issuer.unsupported()

        snapshot = await self.collector.collect()
        score = self.scorer.score(snapshot)
        digest = context_hash(snapshot)
        logger.debug("Context %s scored %s %s", digest, score.value, score.sub_scores.to_dict())
        return await self.issuer.request_token(site_url, digest, score)

    async def verify_context(self, site_url: str) -> VerifyContextResponse:
        """
        Handle a ``VERIFY_CONTEXT`` request.

        Returns ``success=True`` with the token (the null-token sentinel
        for unsupported sites) or ``success=False`` with a readable error.
        """
        try:
            result = await self.attest(site_url)
        except SecureContextError as e:
            logger.warning("Context verification failed: %s", e)
            return VerifyContextResponse(success=False, error=str(e), failure_kind=failure_kind_for(e))
        return VerifyContextResponse(success=True, token=result.token.to_payload())
