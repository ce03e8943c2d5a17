"""
Signal Sources

Pluggable providers for the four context signals: location, local-network
fingerprint, motion, and proximity beacon. Each source produces one
timestamped reading per call or raises; sources fail independently.

The static sources below stand in for real device backends. A production
backend wraps its provider in ``CallableSignalSource`` (or subclasses
``SignalSource``) without any change to the collector.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .errors import SignalUnavailableError
from .util import now_ms


class SignalKind(str, Enum):
    """The four signal variants collected per attestation attempt."""
    LOCATION = "location"
    NETWORK_FINGERPRINT = "network_fingerprint"
    MOTION = "motion_signature"
    PROXIMITY_BEACON = "proximity_beacon"


@dataclass(frozen=True)
class SignalReading:
    """A single timestamped reading (epoch milliseconds)."""
    kind: SignalKind
    value: Dict[str, Any]
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.value)
        data["timestamp"] = self.timestamp
        return data


Clock = Callable[[], int]


class SignalSource(ABC):
    """
    Abstract signal provider.

    Implementations must raise (typically ``SignalUnavailableError``)
    rather than return a partial or empty reading.
    """

    kind: SignalKind

    @abstractmethod
    async def read(self) -> SignalReading:
        """Produce one reading."""
        pass

    @property
    def name(self) -> str:
        return self.kind.value


class _StaticSource(SignalSource):
    """Returns a fixed value stamped with the current time."""

    def __init__(self, value: Dict[str, Any], clock: Optional[Clock] = None):
        self._value = value
        self._clock = clock or now_ms

    async def read(self) -> SignalReading:
        return SignalReading(self.kind, dict(self._value), self._clock())


class StaticLocationSource(_StaticSource):
    kind = SignalKind.LOCATION

    def __init__(
        self,
        lat: float,
        lng: float,
        accuracy: float,
        clock: Optional[Clock] = None
    ):
        super().__init__({"lat": lat, "lng": lng, "accuracy": accuracy}, clock)


class StaticNetworkFingerprintSource(_StaticSource):
    """Placeholder: no platform exposes nearby networks to this layer."""
    kind = SignalKind.NETWORK_FINGERPRINT

    def __init__(
        self,
        nearby_networks: Optional[List[str]] = None,
        connection_strength: int = 0,
        clock: Optional[Clock] = None
    ):
        super().__init__(
            {
                "nearby_networks": list(nearby_networks or []),
                "connection_strength": connection_strength,
            },
            clock,
        )


class StaticMotionSource(_StaticSource):
    """Placeholder: a device at rest."""
    kind = SignalKind.MOTION

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(
            {
                "acceleration": {"x": 0, "y": 0, "z": 0},
                "rotation": {"alpha": 0, "beta": 0, "gamma": 0},
            },
            clock,
        )


class StaticProximityBeaconSource(_StaticSource):
    """Placeholder: no point-of-sale beacon in range."""
    kind = SignalKind.PROXIMITY_BEACON

    def __init__(
        self,
        terminal_id: Optional[str] = None,
        signal_strength: int = 0,
        clock: Optional[Clock] = None
    ):
        super().__init__({"terminal_id": terminal_id, "signal_strength": signal_strength}, clock)


ProviderResult = Optional[Dict[str, Any]]
Provider = Callable[[], Union[ProviderResult, Awaitable[ProviderResult]]]


class CallableSignalSource(SignalSource):
    """
    Adapts a device-runtime provider to ``SignalSource``.

    The provider may be sync or async and returns a dict of values; sync
    providers are called in a worker thread. A
    ``timestamp`` key, when present, is used as the reading time; a None
    result means the signal is unavailable.
    """

    def __init__(self, kind: SignalKind, provider: Provider, clock: Optional[Clock] = None):
        self.kind = kind
        self._provider = provider
        self._clock = clock or now_ms

    async def read(self) -> SignalReading:
        if inspect.iscoroutinefunction(self._provider):
            result = await self._provider()
        else:
            # blocking providers run off the event loop so timeouts still apply
            result = await asyncio.to_thread(self._provider)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            raise SignalUnavailableError(f"{self.kind.value} provider returned no reading")
        value = dict(result)
        timestamp = value.pop("timestamp", None)
        if timestamp is None:
            timestamp = self._clock()
        return SignalReading(self.kind, value, int(timestamp))


@dataclass
class SignalSources:
    """The set of sources a collector reads, one per kind."""
    location: SignalSource
    network_fingerprint: SignalSource
    motion: SignalSource
    proximity_beacon: SignalSource

    def __post_init__(self):
        expected = {
            "location": SignalKind.LOCATION,
            "network_fingerprint": SignalKind.NETWORK_FINGERPRINT,
            "motion": SignalKind.MOTION,
            "proximity_beacon": SignalKind.PROXIMITY_BEACON,
        }
        for attr, kind in expected.items():
            source = getattr(self, attr)
            if source.kind != kind:
                raise ValueError(f"{attr} source has kind {source.kind.value}, expected {kind.value}")

    def all(self) -> List[SignalSource]:
        return [self.location, self.network_fingerprint, self.motion, self.proximity_beacon]

    @classmethod
    def placeholders(
        cls,
        lat: float = 0.0,
        lng: float = 0.0,
        accuracy: float = 10.0,
        clock: Optional[Clock] = None
    ) -> "SignalSources":
        """Static sources for every kind; useful for development and tests."""
        return cls(
            location=StaticLocationSource(lat, lng, accuracy, clock),
            network_fingerprint=StaticNetworkFingerprintSource(clock=clock),
            motion=StaticMotionSource(clock=clock),
            proximity_beacon=StaticProximityBeaconSource(clock=clock),
        )
