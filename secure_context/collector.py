"""
Context Collector

Fan-out/fan-in aggregation of the four signal sources into one
``ContextSnapshot``. All reads run concurrently; the first failure
cancels the rest and aborts the collection. Retry policy belongs to
the caller.
"""

import asyncio
import logging
import math
from typing import Callable, Dict, Optional

from . import config
from .canonicalization import canonicalize
from .context import ContextSnapshot
from .errors import CollectionError
from .signals import SignalKind, SignalReading, SignalSource, SignalSources
from .util import now_ms

logger = logging.getLogger(__name__)


def check_reading(reading: SignalReading) -> None:
    """
    Reject readings that cannot be scored or hashed.

    Raises:
        ValueError: for a location without a finite numeric accuracy, or
            any value that has no canonical JSON form
    """
    if reading.kind == SignalKind.LOCATION:
        accuracy = reading.value.get("accuracy")
        if isinstance(accuracy, bool) or not isinstance(accuracy, (int, float)):
            raise ValueError("location reading needs a numeric accuracy")
        if not math.isfinite(accuracy):
            raise ValueError(f"location accuracy must be finite, got {accuracy}")
    canonicalize(reading.to_dict())


class ContextCollector:
    """
    Gathers one reading from every source.

    Usage:
        collector = ContextCollector(SignalSources.placeholders())
        snapshot = await collector.collect()
    """

    def __init__(
        self,
        sources: SignalSources,
        timeout_seconds: Optional[float] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self.sources = sources
        self.timeout_seconds = config.SIGNAL_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self._clock = clock or now_ms

    async def _read(self, source: SignalSource) -> SignalReading:
        try:
            reading = await asyncio.wait_for(source.read(), self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            raise CollectionError(source.name, TimeoutError(f"no reading within {self.timeout_seconds}s")) from e
        except Exception as e:
            raise CollectionError(source.name, e) from e

        if not isinstance(reading, SignalReading) or reading.kind != source.kind:
            raise CollectionError(source.name, ValueError("source returned a malformed reading"))
        try:
            check_reading(reading)
        except ValueError as e:
            raise CollectionError(source.name, e) from e
        return reading

    async def collect(self) -> ContextSnapshot:
        """
        Collect a snapshot.

        Raises:
            CollectionError: naming the first source that failed
        """
        tasks: Dict[asyncio.Task, SignalSource] = {
            asyncio.ensure_future(self._read(source)): source
            for source in self.sources.all()
        }
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            errors = [task.exception() for task in done if task.exception() is not None]
            if errors:
                logger.warning("Signal collection aborted: %s", errors[0])
                raise errors[0]
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        readings = {tasks[task].kind: task.result() for task in done}
        return ContextSnapshot(
            location=readings[SignalKind.LOCATION],
            network_fingerprint=readings[SignalKind.NETWORK_FINGERPRINT],
            motion_signature=readings[SignalKind.MOTION],
            proximity_beacon=readings[SignalKind.PROXIMITY_BEACON],
            collected_at=self._clock(),
        )
