"""
Context Snapshot

One attestation attempt's worth of signal readings. A snapshot is
immutable once built; its canonical dict form is what gets hashed.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from .signals import SignalKind, SignalReading


@dataclass(frozen=True)
class ContextSnapshot:
    """The four signal readings plus the collection time (epoch ms)."""
    location: SignalReading
    network_fingerprint: SignalReading
    motion_signature: SignalReading
    proximity_beacon: SignalReading
    collected_at: int

    def __post_init__(self):
        for name, kind in (
            ("location", SignalKind.LOCATION),
            ("network_fingerprint", SignalKind.NETWORK_FINGERPRINT),
            ("motion_signature", SignalKind.MOTION),
            ("proximity_beacon", SignalKind.PROXIMITY_BEACON),
        ):
            reading = getattr(self, name)
            if reading.kind != kind:
                raise ValueError(f"{name} must be a {kind.value} reading, got {reading.kind.value}")

    @property
    def readings(self) -> List[SignalReading]:
        return [self.location, self.network_fingerprint, self.motion_signature, self.proximity_beacon]

    @property
    def location_accuracy(self) -> float:
        return float(self.location.value["accuracy"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location.to_dict(),
            "network_fingerprint": self.network_fingerprint.to_dict(),
            "motion_signature": self.motion_signature.to_dict(),
            "proximity_beacon": self.proximity_beacon.to_dict(),
            "collected_at": self.collected_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextSnapshot":
        def reading(kind: SignalKind) -> SignalReading:
            value = dict(data[kind.value])
            timestamp = int(value.pop("timestamp"))
            return SignalReading(kind, value, timestamp)

        return cls(
            location=reading(SignalKind.LOCATION),
            network_fingerprint=reading(SignalKind.NETWORK_FINGERPRINT),
            motion_signature=reading(SignalKind.MOTION),
            proximity_beacon=reading(SignalKind.PROXIMITY_BEACON),
            collected_at=int(data["collected_at"]),
        )
