"""
Request Interceptor

Augments outbound API calls with attestation headers:

    X-Secure-Context-Token        the active token
    X-Context-Consistency-Score   its consistency score
    X-Shopping-Site               the site's registry domain

Headers are attached only when the target URL belongs to the current
site's API and a usable token is active. Otherwise the request passes
through unmodified: attestation is advisory at this layer and the
server enforces it.

Matching parses the URL. The host must equal the API host (or be a
subdomain of it) and the path must sit under the pattern's path
prefix; a pattern appearing in a query string or fragment never
matches.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

import requests
from requests.auth import AuthBase

from . import config
from .config import SiteConfig, SiteRegistry, host_matches
from .verification import VerificationLoop


@dataclass(frozen=True)
class ApiPattern:
    """A site's API location: ``host`` plus an optional path prefix."""
    host: str
    path_prefix: str = "/"

    @classmethod
    def parse(cls, pattern: str) -> "ApiPattern":
        """Parse ``api.example.com`` or ``api.example.com/v1`` (scheme optional)."""
        if "://" not in pattern:
            pattern = "//" + pattern
        parts = urlsplit(pattern)
        if not parts.hostname:
            raise ValueError(f"API pattern has no host: {pattern!r}")
        return cls(host=parts.hostname.lower(), path_prefix=parts.path or "/")

    def matches(self, url: str) -> bool:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https"):
            return False
        if not host_matches((parts.hostname or "").lower(), self.host):
            return False
        path = parts.path or "/"
        prefix = self.path_prefix
        if prefix == "/" or path == prefix:
            return True
        return path.startswith(prefix if prefix.endswith("/") else prefix + "/")


def format_score(score: float) -> str:
    """Render a score the way JavaScript's Number#toString does."""
    score = float(score)
    return str(int(score)) if score.is_integer() else repr(score)


class RequestInterceptor:
    """
    Header augmentation for one browsing context.

    Usage:
        interceptor = RequestInterceptor(loop, registry)
        headers = interceptor.augment_headers(url, {"Accept": "application/json"})

        session = requests.Session()
        session.auth = interceptor.auth()
    """

    def __init__(self, loop: VerificationLoop, registry: Optional[SiteRegistry] = None):
        self.loop = loop
        self.registry = registry or config.load_site_registry()

    def current_site(self) -> Optional[SiteConfig]:
        if not self.loop.site_url:
            return None
        return self.registry.lookup(self.loop.site_url)

    def applies_to(self, url: str) -> bool:
        site = self.current_site()
        return site is not None and ApiPattern.parse(site.api_pattern).matches(url)

    def attestation_headers(self, url: str) -> Dict[str, str]:
        """Headers to attach for ``url``; empty when none apply."""
        site = self.current_site()
        if site is None or not ApiPattern.parse(site.api_pattern).matches(url):
            return {}
        token = self.loop.active_token
        if token is None:
            return {}
        return {
            config.TOKEN_HEADER: token.token,
            config.SCORE_HEADER: format_score(token.consistency_score),
            config.SITE_HEADER: site.domain,
        }

    def augment_headers(self, url: str, headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Return a copy of ``headers`` with attestation headers added when applicable."""
        augmented = dict(headers or {})
        augmented.update(self.attestation_headers(url))
        return augmented

    def auth(self) -> "AttestationAuth":
        return AttestationAuth(self)


class AttestationAuth(AuthBase):
    """``requests`` hook that adds attestation headers to every prepared request."""

    def __init__(self, interceptor: RequestInterceptor):
        self.interceptor = interceptor

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        r.headers.update(self.interceptor.attestation_headers(r.url))
        return r
