"""
Attestation runtime: the per-process object graph.

One identity manager, one attestor, and one verification loop per
browsing context. Created once by the background service or CLI and
passed by reference; nothing here is module-level state.
"""

import logging
from typing import Dict, Optional

import requests

from .attestation import ContextAttestor
from .client import AttestationServiceClient
from .collector import ContextCollector
from .config import SiteConfig, SiteRegistry
from .identity import DeviceIdentityManager, KeyStore, get_key_store
from .interceptor import RequestInterceptor
from .issuance import TokenIssuanceClient
from .scoring import ConsistencyScorer
from .signals import SignalSources
from .verification import VerificationLoop

logger = logging.getLogger(__name__)


class AttestationRuntime:
    """
    Usage:
        runtime = AttestationRuntime.from_config()
        await runtime.identity.ensure_key_pair()
        runtime.loop_for("tab-7").start(page_url)
    """

    def __init__(
        self,
        identity: DeviceIdentityManager,
        attestor: ContextAttestor,
        client: AttestationServiceClient,
        loop_options: Optional[dict] = None
    ):
        self.identity = identity
        self.attestor = attestor
        self.client = client
        self._loop_options = loop_options or {}
        self._loops: Dict[str, VerificationLoop] = {}
        identity.add_revocation_listener(self._on_revoked)

    @classmethod
    def from_config(
        cls,
        session: Optional[requests.Session] = None,
        key_store: Optional[KeyStore] = None,
        sources: Optional[SignalSources] = None,
        registry: Optional[SiteRegistry] = None,
        scorer: Optional[ConsistencyScorer] = None,
        loop_options: Optional[dict] = None
    ) -> "AttestationRuntime":
        client = AttestationServiceClient(session)
        identity = DeviceIdentityManager(key_store or get_key_store(), client)
        issuer = TokenIssuanceClient(identity, client, registry=registry)
        collector = ContextCollector(sources or SignalSources.placeholders())
        attestor = ContextAttestor(collector, scorer or ConsistencyScorer(), issuer)
        return cls(identity, attestor, client, loop_options)

    @property
    def registry(self) -> SiteRegistry:
        return self.attestor.issuer.registry

    def site_for(self, url: str) -> Optional[SiteConfig]:
        return self.registry.lookup(url)

    def loop_for(self, context_id: str) -> VerificationLoop:
        """The context's loop, created INACTIVE on first use."""
        loop = self._loops.get(context_id)
        if loop is None:
            loop = VerificationLoop(self.attestor, context_id=context_id, **self._loop_options)
            self._loops[context_id] = loop
        return loop

    def get_loop(self, context_id: str) -> Optional[VerificationLoop]:
        return self._loops.get(context_id)

    def interceptor_for(self, context_id: str) -> RequestInterceptor:
        return RequestInterceptor(self.loop_for(context_id), self.registry)

    def stop_all(self) -> None:
        for loop in self._loops.values():
            loop.stop()

    def _on_revoked(self) -> None:
        logger.warning("Device revoked; stopping %d verification loop(s)", len(self._loops))
        self.stop_all()
        self._loops.clear()

    def close(self) -> None:
        self.stop_all()
        self.client.close()
