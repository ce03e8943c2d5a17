"""
Configuration module for secure-context.

Centralizes all configuration with environment variable support,
the supported-site registry, and cached loading of registry files.
"""

import os
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path
from urllib.parse import urlsplit

from .errors import SiteConfigError

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("SECURE_CONTEXT_ENV", "dev")  # dev|stage|prod

# Attestation policy
CONSISTENCY_THRESHOLD = float(os.getenv("CONSISTENCY_THRESHOLD", "0.7"))
TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "25"))
TOKEN_TTL_SECONDS = float(os.getenv("TOKEN_TTL_SECONDS", "30"))
MAX_BACKOFF_SECONDS = float(os.getenv("MAX_BACKOFF_SECONDS", "200"))

# Timeouts (seconds)
SIGNAL_TIMEOUT_SECONDS = float(os.getenv("SIGNAL_TIMEOUT_SECONDS", "10"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

# Device key storage
KEY_STORE_PATH = os.getenv("KEY_STORE_PATH", "secrets/device_key.json")
KEY_PASSPHRASE = os.getenv("SECURE_CONTEXT_KEY_PASSPHRASE", "")

# Site registry
SITES_PATH = os.getenv("SITES_PATH", "")
DEFAULT_ATTESTATION_ENDPOINT = os.getenv(
    "DEFAULT_ATTESTATION_ENDPOINT", "https://api.walmart.com/secure-context"
)

# Outbound header names
TOKEN_HEADER = "X-Secure-Context-Token"
SCORE_HEADER = "X-Context-Consistency-Score"
SITE_HEADER = "X-Shopping-Site"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1").lower() in ("1", "true", "yes")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


# ============================================================
# Site Registry
# ============================================================

@dataclass(frozen=True)
class SiteConfig:
    """A retail site whose backend accepts attestation tokens."""
    domain: str
    api_pattern: str
    store_pattern: str
    issuance_endpoint: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteConfig":
        try:
            return cls(
                domain=data["domain"],
                api_pattern=data["apiPattern"],
                store_pattern=data["storePattern"],
                issuance_endpoint=data["issuanceEndpoint"].rstrip("/"),
            )
        except (KeyError, AttributeError) as e:
            raise SiteConfigError(f"invalid site entry: {data!r}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "apiPattern": self.api_pattern,
            "storePattern": self.store_pattern,
            "issuanceEndpoint": self.issuance_endpoint,
        }

    def is_store_page(self, url: str) -> bool:
        """Check whether a page URL on this site is an in-store page."""
        return urlsplit(url).path.startswith(self.store_pattern)


DEFAULT_SITES: List[SiteConfig] = [
    SiteConfig("walmart.com", "api.walmart.com", "/store/", "https://api.walmart.com/secure-context"),
    SiteConfig("amazon.com", "api.amazon.com", "/dp/", "https://api.amazon.com/secure-context"),
    SiteConfig("target.com", "api.target.com", "/p/", "https://api.target.com/secure-context"),
    SiteConfig("bestbuy.com", "api.bestbuy.com", "/products/", "https://api.bestbuy.com/secure-context"),
    SiteConfig("ebay.com", "api.ebay.com", "/itm/", "https://api.ebay.com/secure-context"),
    SiteConfig("costco.com", "api.costco.com", "/product/", "https://api.costco.com/secure-context"),
]


def page_host(url: str) -> str:
    """Lowercased host of a URL with a leading ``www.`` removed."""
    host = (urlsplit(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def host_matches(host: str, domain: str) -> bool:
    """True if host is the domain itself or one of its subdomains."""
    domain = domain.lower()
    return host == domain or host.endswith("." + domain)


class SiteRegistry:
    """
    Ordered registry of supported sites.

    Lookup parses the URL and compares hosts; the first entry whose
    domain matches wins.
    """

    def __init__(self, sites: Optional[List[SiteConfig]] = None):
        self._sites = list(DEFAULT_SITES if sites is None else sites)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SiteRegistry":
        return cls([SiteConfig.from_dict(entry) for entry in data.get("sites", [])])

    def __iter__(self):
        return iter(self._sites)

    def __len__(self) -> int:
        return len(self._sites)

    def lookup(self, url: str) -> Optional[SiteConfig]:
        host = page_host(url)
        if not host:
            return None
        for site in self._sites:
            if host_matches(host, site.domain):
                return site
        return None


# ============================================================
# Cached Registry Loading
# ============================================================

class RegistryCache:
    """
    Thread-safe cache of parsed site registries keyed by file path.

    An entry is reloaded once it is older than the TTL or the file's
    modification time changes, so registry edits are picked up without
    a restart.
    """

    def __init__(self, ttl_seconds: float = 60):
        self._entries: Dict[str, Tuple[float, float, SiteRegistry]] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def get(self, path: str) -> SiteRegistry:
        mtime = os.stat(path).st_mtime
        with self._lock:
            entry = self._entries.get(path)
            if entry is not None:
                loaded_at, loaded_mtime, registry = entry
                if loaded_mtime == mtime and time.time() - loaded_at <= self._ttl:
                    return registry

            with open(path, "r", encoding="utf-8") as f:
                registry = SiteRegistry.from_json(json.load(f))
            self._entries[path] = (time.time(), mtime, registry)
            return registry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_registry_cache = RegistryCache(ttl_seconds=CONFIG_CACHE_TTL)


def load_site_registry(path: Optional[str] = None) -> SiteRegistry:
    """
    Load the site registry.

    Uses the JSON file at ``path`` (or SITES_PATH) when set, otherwise
    the built-in defaults.

    Raises:
        SiteConfigError: If the file is missing, malformed, or has an invalid entry
    """
    path = path or SITES_PATH
    if not path:
        return SiteRegistry()
    try:
        return _registry_cache.get(path)
    except (OSError, ValueError) as e:
        raise SiteConfigError(f"cannot load site registry from {path}: {e}") from e


def invalidate_config_cache() -> None:
    _registry_cache.clear()


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Check that configured locations exist.

    Returns:
        name -> exists, for the key store directory and (when set) the
        site registry file
    """
    checks = {"key_store_dir": Path(KEY_STORE_PATH).parent}
    if SITES_PATH:
        checks["sites"] = Path(SITES_PATH)
    return {name: path.exists() for name, path in checks.items()}
