"""
Verification Loop

Per-browsing-context state machine that keeps an attestation token
fresh while the user is on an in-store page.

    INACTIVE --start--> VERIFYING --> ACTIVE(token) | FAILED(reason)
                            ^                |
                            +----- tick -----+
    any state --stop--> INACTIVE

Ticks are single-flight: the scheduler awaits each cycle before
sleeping for the rest of the interval, so cycles never overlap. The
default 25 s interval refreshes tokens before their 30 s TTL runs out.
Failures never stop the loop; after consecutive failures the delay
doubles up to a cap and resets on the next success. A cycle that
completes after ``stop`` (or a restart) is discarded.

The loop is the sole owner of the current token. During a refresh the
previous token stays available until it expires or a cycle fails.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Union

from . import config
from .attestation import ContextAttestor, failure_kind_for
from .issuance import AttestationToken, IssuanceResult
from .logging_config import audit_log, new_cycle_id

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    INACTIVE = "inactive"
    VERIFYING = "verifying"
    ACTIVE = "active"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a cycle failed. BELOW_THRESHOLD is a policy outcome, not an error."""
    BELOW_THRESHOLD = "BELOW_THRESHOLD"
    TOKEN_REJECTED = "TOKEN_REJECTED"
    COLLECTION_ERROR = "COLLECTION_ERROR"
    SIGNING_ERROR = "SIGNING_ERROR"
    ISSUANCE_ERROR = "ISSUANCE_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class VerificationState:
    status: VerificationStatus
    token: Optional[AttestationToken] = None
    failure: Optional[FailureKind] = None
    reason: Optional[str] = None

    @classmethod
    def inactive(cls, reason: Optional[str] = None) -> "VerificationState":
        return cls(VerificationStatus.INACTIVE, reason=reason)

    @classmethod
    def verifying(cls, token: Optional[AttestationToken] = None) -> "VerificationState":
        return cls(VerificationStatus.VERIFYING, token=token)

    @classmethod
    def active(cls, token: AttestationToken) -> "VerificationState":
        return cls(VerificationStatus.ACTIVE, token=token)

    @classmethod
    def failed(cls, failure: FailureKind, reason: str) -> "VerificationState":
        return cls(VerificationStatus.FAILED, failure=failure, reason=reason)


@dataclass(frozen=True)
class StatusEvent:
    """Outward status notification for the page layer."""
    context_id: str
    status: VerificationStatus
    consistency_score: float = 0.0
    reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "contextId": self.context_id,
            "status": self.status.value,
            "consistencyScore": self.consistency_score,
            "reason": self.reason,
            "failureKind": self.failure_kind.value if self.failure_kind else None,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TokenEvent:
    """Current token for page-level consumption; None when withdrawn."""
    context_id: str
    token: Optional[AttestationToken]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "contextId": self.context_id,
            "token": self.token.to_payload().to_wire() if self.token else None,
            "timestamp": self.timestamp,
        }


Event = Union[StatusEvent, TokenEvent]
Listener = Callable[[Event], None]

NOT_APPLICABLE = "Attestation not applicable for this site"


class VerificationLoop:
    """
    Periodic context verification for one browsing context.

    Usage:
        loop = VerificationLoop(attestor, context_id="tab-7")
        loop.subscribe(print)
        loop.start("https://www.walmart.com/store/5260")
        ...
        token = loop.active_token
        loop.stop()
    """

    def __init__(
        self,
        attestor: ContextAttestor,
        context_id: str = "default",
        interval_seconds: Optional[float] = None,
        threshold: Optional[float] = None,
        max_backoff_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.attestor = attestor
        self.context_id = context_id
        self.interval_seconds = config.TICK_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self.threshold = config.CONSISTENCY_THRESHOLD if threshold is None else threshold
        self.max_backoff_seconds = (
            config.MAX_BACKOFF_SECONDS if max_backoff_seconds is None else max_backoff_seconds
        )
        self._clock = clock or time.time

        self._state = VerificationState.inactive()
        self._site_url: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._consecutive_failures = 0
        self._listeners: List[Listener] = []
        self.last_status: StatusEvent = StatusEvent(context_id, VerificationStatus.INACTIVE)
        self.last_token_event: TokenEvent = TokenEvent(context_id, None)

    # ------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------

    @property
    def state(self) -> VerificationState:
        return self._state

    @property
    def site_url(self) -> Optional[str]:
        return self._site_url

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def active_token(self) -> Optional[AttestationToken]:
        """The current token, or None unless it is usable right now."""
        state = self._state
        if state.status not in (VerificationStatus.ACTIVE, VerificationStatus.VERIFYING):
            return None
        if state.token is None or not state.token.is_usable(self.threshold, self._clock()):
            return None
        return state.token

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register for status and token events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: Event) -> None:
        if isinstance(event, StatusEvent):
            self.last_status = event
        else:
            self.last_token_event = event
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Verification listener failed")

    def _set_state(self, state: VerificationState) -> None:
        old = self._state.status
        self._state = state
        if old != state.status:
            audit_log.status_change(self.context_id, old.value, state.status.value)

    # ------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------

    def start(self, site_url: str) -> None:
        """
        Enter VERIFYING (emitting a verifying status) and schedule periodic
        verification for ``site_url``.

        Must be called from a running event loop. Restarting replaces any
        previous schedule.
        """
        self._cancel()
        self._generation += 1
        self._site_url = site_url
        self._consecutive_failures = 0
        self._set_state(VerificationState.verifying())
        self._emit(StatusEvent(self.context_id, VerificationStatus.VERIFYING))
        self._task =asyncio.get_running_loop().create_task(
            self._run(self._generation),
            name=f"verification-{self.context_id}",
        )

    def stop(self) -> None:
        """Stop immediately: cancel the schedule, drop the token, emit inactive."""
        self._generation += 1
        self._cancel()
        self._consecutive_failures = 0
        self._set_state(VerificationState.inactive())
        self._emit(StatusEvent(self.context_id, VerificationStatus.INACTIVE))
        self._emit(TokenEvent(self.context_id, None))

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def next_delay(self) -> float:
        """Delay before the next tick, doubling per consecutive failure up to the cap."""
        if self._consecutive_failures == 0:
            return self.interval_seconds
        cap = max(self.max_backoff_seconds, self.interval_seconds)
        return min(self.interval_seconds * (2 ** (self._consecutive_failures - 1)), cap)

    async def _run(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        while generation == self._generation:
            started = loop.time()
            await self.run_cycle(generation)
            if generation != self._generation or self._state.status == VerificationStatus.INACTIVE:
                return
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.next_delay() - elapsed))

    async def run_cycle(self, generation: Optional[int] = None) -> VerificationState:
        """
        Run one verification cycle and apply its outcome.

        All errors are converted into FAILED states. A result arriving
        after ``stop`` or a restart is discarded.
        """
        if generation is None:
            generation = self._generation
        if self._state.status != VerificationStatus.VERIFYING:
            self._set_state(VerificationState.verifying(self._state.token))

        new_cycle_id()
        site_url = self._site_url
        try:
            result = await self.attestor.attest(site_url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation != self._generation:
                return self._state
            kind = FailureKind(failure_kind_for(e))
            if kind == FailureKind.UNEXPECTED_ERROR:
                logger.exception("Unexpected error during context verification")
            self._fail(kind, str(e) or type(e).__name__)
            return self._state

        if generation != self._generation:
            logger.debug("Discarding verification result for stopped context %s", self.context_id)
            return self._state
        self._apply(result)
        return self._state

    def _apply(self, result: IssuanceResult) -> None:
        token = result.token
        if not result.supported:
            self._consecutive_failures = 0
            self._set_state(VerificationState.inactive(NOT_APPLICABLE))
            self._emit(StatusEvent(self.context_id, VerificationStatus.INACTIVE, reason=NOT_APPLICABLE))
            self._emit(TokenEvent(self.context_id, None))
            return

        if token.token is None:
            self._fail(FailureKind.TOKEN_REJECTED, "Attestation service issued no token", token.consistency_score)
            return

        if token.consistency_score < self.threshold:
            self._fail(FailureKind.BELOW_THRESHOLD, "Insufficient consistency score", token.consistency_score)
            return

        self._consecutive_failures = 0
        self._set_state(VerificationState.active(token))
        self._emit(StatusEvent(self.context_id, VerificationStatus.ACTIVE, token.consistency_score))
        self._emit(TokenEvent(self.context_id, token))

    def _fail(self, kind: FailureKind, reason: str, consistency_score: float = 0.0) -> None:
        self._consecutive_failures += 1
        self._set_state(VerificationState.failed(kind, reason))
        audit_log.verification_failed(self.context_id, kind.value, reason, consistency_score)
        self._emit(StatusEvent(
            self.context_id,
            VerificationStatus.FAILED,
            consistency_score,
            reason=reason,
            failure_kind=kind,
        ))
        self._emit(TokenEvent(self.context_id, None))
