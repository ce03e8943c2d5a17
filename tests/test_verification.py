"""
Verification loop tests.

Critical invariants tested:
    A TOKEN IS ONLY EXPOSED WHILE ACTIVE, UNEXPIRED AND ABOVE THRESHOLD
    NOTHING ISSUED AFTER STOP IS EVER OBSERVED
    FAILURES NEVER STOP THE LOOP
"""

import asyncio
import unittest

from secure_context.attestation import ContextAttestor
from secure_context.client import AttestationServiceClient
from secure_context.collector import ContextCollector
from secure_context.config import SiteRegistry
from secure_context.errors import CollectionError, IssuanceError, SigningError, SignalUnavailableError
from secure_context.identity import DeviceIdentityManager, InMemoryKeyStore
from secure_context.issuance import TokenIssuanceClient
from secure_context.scoring import ConsistencyScorer
from secure_context.verification import (
    NOT_APPLICABLE,
    FailureKind,
    StatusEvent,
    TokenEvent,
    VerificationLoop,
    VerificationStatus,
)

from fakes import (
    FakeAttestationService,
    GatedAttestor,
    ScriptedAttestor,
    issued,
    sources_with,
    unsupported,
    wait_until,
)

STORE_URL = "https://www.walmart.com/store/5260"


def collection_error():
    return CollectionError("location", SignalUnavailableError("denied"))


class SlowAttestor:
    """Takes ``delay`` seconds per attestation and tracks concurrency."""

    def __init__(self, result, delay):
        self.result = result
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def attest(self, site_url):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self.result


class Recorder:
    def __init__(self, loop):
        self.events = []
        loop.subscribe(self.events.append)

    def statuses(self):
        return [e.status for e in self.events if isinstance(e, StatusEvent)]

    def tokens(self):
        return [e.token for e in self.events if isinstance(e, TokenEvent)]


class TestEndToEnd(unittest.IsolatedAsyncioTestCase):
    """Full pipeline against a fake Attestation Service."""

    async def build(self, accuracy, offsets_ms, scorer=None):
        service = FakeAttestationService()
        client = AttestationServiceClient(service)
        identity = DeviceIdentityManager(InMemoryKeyStore(), client)
        await identity.ensure_key_pair()
        attestor = ContextAttestor(
            ContextCollector(sources_with(accuracy, offsets_ms)),
            scorer or ConsistencyScorer(),
            TokenIssuanceClient(identity, client, registry=SiteRegistry()),
        )
        loop = VerificationLoop(attestor, context_id="tab-1", interval_seconds=60)
        self.addCleanup(loop.stop)
        return loop, service

    async def run_first_cycle(self, loop):
        recorder = Recorder(loop)
        loop.start(STORE_URL)
        await wait_until(lambda: loop.state.status in (VerificationStatus.ACTIVE, VerificationStatus.FAILED))
        return recorder

    async def test_precise_fresh_context_becomes_active(self):
        loop, service = await self.build(accuracy=10, offsets_ms=(0, 500, 1000, 2000))

        recorder = await self.run_first_cycle(loop)

        self.assertEqual(loop.state.status, VerificationStatus.ACTIVE)
        self.assertEqual(loop.active_token.consistency_score, 1.0)
        self.assertEqual(loop.active_token.token, "tok-1")
        self.assertEqual(recorder.statuses(), [VerificationStatus.VERIFYING, VerificationStatus.ACTIVE])
        self.assertEqual(recorder.tokens()[0].token, "tok-1")
        self.assertEqual(service.posts("issue-token")[0]["consistencyScore"], 1.0)

    async def test_degraded_context_still_meets_threshold(self):
        loop, _ = await self.build(accuracy=50, offsets_ms=(0, 3000, 6000, 8000))

        await self.run_first_cycle(loop)

        self.assertEqual(loop.state.status, VerificationStatus.ACTIVE)
        self.assertEqual(loop.active_token.consistency_score, 0.75)

    async def test_below_threshold_fails_and_keeps_running(self):
        scorer = ConsistencyScorer(motion_evaluator=lambda r: 0.0, network_evaluator=lambda r: 0.0)
        loop, _ = await self.build(accuracy=50, offsets_ms=(0, 3000, 6000, 8000), scorer=scorer)

        recorder = await self.run_first_cycle(loop)

        self.assertEqual(loop.state.status, VerificationStatus.FAILED)
        self.assertEqual(loop.state.failure, FailureKind.BELOW_THRESHOLD)
        self.assertEqual(loop.state.reason, "Insufficient consistency score")
        self.assertEqual(recorder.statuses(), [VerificationStatus.VERIFYING, VerificationStatus.FAILED])
        self.assertEqual(loop.last_status.consistency_score, 0.25)
        self.assertIsNone(loop.active_token)
        self.assertTrue(loop.running)

    async def test_unsupported_site_goes_inactive_without_collecting(self):
        loop, service = await self.build(accuracy=10, offsets_ms=(0, 0, 0, 0))
        recorder = Recorder(loop)

        loop.start("https://example.com/store/1")
        await wait_until(lambda: not loop.running)

        self.assertEqual(loop.state.status, VerificationStatus.INACTIVE)
        self.assertEqual(loop.state.reason, NOT_APPLICABLE)
        self.assertEqual(recorder.statuses(), [VerificationStatus.VERIFYING, VerificationStatus.INACTIVE])
        self.assertEqual(service.calls, [])


class TestLifecycle(unittest.IsolatedAsyncioTestCase):

    async def test_starts_verifying_then_single_transition(self):
        attestor = ScriptedAttestor(issued())
        loop = VerificationLoop(attestor, interval_seconds=60)
        recorder = Recorder(loop)

        loop.start(STORE_URL)
        self.assertEqual(loop.state.status, VerificationStatus.VERIFYING)
        self.assertIsNone(loop.active_token)

        await wait_until(lambda: loop.state.status == VerificationStatus.ACTIVE)
        await asyncio.sleep(0.05)

        self.assertEqual(attestor.calls, [STORE_URL])
        self.assertEqual(recorder.statuses(), [VerificationStatus.VERIFYING, VerificationStatus.ACTIVE])
        loop.stop()

    async def test_ticks_repeat_on_interval(self):
        attestor = ScriptedAttestor(issued())
        loop = VerificationLoop(attestor, interval_seconds=0.05)
        loop.start(STORE_URL)

        await wait_until(lambda: len(attestor.calls) >= 3)
        loop.stop()

        self.assertEqual(loop.state.status, VerificationStatus.INACTIVE)

    async def test_ticks_never_overlap(self):
        attestor = SlowAttestor(issued(), delay=0.1)
        loop = VerificationLoop(attestor, interval_seconds=0.01)
        loop.start(STORE_URL)

        await wait_until(lambda: attestor.calls >= 3)
        loop.stop()

        self.assertEqual(attestor.max_in_flight, 1)

    async def test_stop_withdraws_token_and_halts_ticks(self):
        attestor = ScriptedAttestor(issued())
        loop = VerificationLoop(attestor, interval_seconds=0.05)
        recorder = Recorder(loop)
        loop.start(STORE_URL)
        await wait_until(lambda: loop.active_token is not None)

        loop.stop()
        calls = len(attestor.calls)
        await asyncio.sleep(0.2)

        self.assertIsNone(loop.active_token)
        self.assertFalse(loop.running)
        self.assertEqual(len(attestor.calls), calls)
        self.assertEqual(recorder.statuses()[-1], VerificationStatus.INACTIVE)
        self.assertIsNone(recorder.tokens()[-1])

    async def test_result_completing_after_stop_is_discarded(self):
        attestor = GatedAttestor(issued())
        loop = VerificationLoop(attestor, interval_seconds=60)
        recorder = Recorder(loop)
        loop.start(STORE_URL)
        await attestor.entered.wait()

        loop.stop()
        attestor.gate.set()
        await asyncio.sleep(0.05)

        self.assertEqual(loop.state.status, VerificationStatus.INACTIVE)
        self.assertIsNone(loop.active_token)
        self.assertNotIn(VerificationStatus.ACTIVE, recorder.statuses())

    async def test_stale_generation_result_is_discarded(self):
        attestor = GatedAttestor(issued())
        loop = VerificationLoop(attestor, interval_seconds=60)
        cycle = asyncio.ensure_future(loop.run_cycle(generation=0))
        await attestor.entered.wait()

        loop.stop()
        attestor.gate.set()
        await cycle

        self.assertEqual(loop.state.status, VerificationStatus.INACTIVE)

    async def test_previous_token_available_during_refresh(self):
        loop = VerificationLoop(ScriptedAttestor(issued(token="tok-1")), interval_seconds=60)
        await loop.run_cycle()
        self.assertEqual(loop.active_token.token, "tok-1")

        gated = GatedAttestor(issued(token="tok-2"))
        loop.attestor = gated
        refresh = asyncio.ensure_future(loop.run_cycle())
        await gated.entered.wait()

        self.assertEqual(loop.state.status, VerificationStatus.VERIFYING)
        self.assertEqual(loop.active_token.token, "tok-1")

        gated.gate.set()
        await refresh
        self.assertEqual(loop.active_token.token, "tok-2")

    async def test_token_expires_without_refresh(self):
        now = [1000.0]
        loop = VerificationLoop(ScriptedAttestor(issued(now=1000.0)), interval_seconds=60, clock=lambda: now[0])
        await loop.run_cycle()
        self.assertIsNotNone(loop.active_token)

        now[0] = 1030.0
        self.assertIsNone(loop.active_token)

    async def test_unsubscribe_and_failing_listener(self):
        loop = VerificationLoop(ScriptedAttestor(issued()), interval_seconds=60)
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        loop.subscribe(broken)
        unsubscribe = loop.subscribe(seen.append)
        await loop.run_cycle()
        unsubscribe()
        await loop.run_cycle()

        self.assertEqual(len(seen), 2)
        self.assertEqual(loop.state.status, VerificationStatus.ACTIVE)


class TestFailures(unittest.IsolatedAsyncioTestCase):

    async def failure_for(self, error):
        loop = VerificationLoop(ScriptedAttestor(error), interval_seconds=60)
        await loop.run_cycle()
        self.assertEqual(loop.state.status, VerificationStatus.FAILED)
        return loop.state.failure

    async def test_failure_kinds(self):
        self.assertEqual(await self.failure_for(collection_error()), FailureKind.COLLECTION_ERROR)
        self.assertEqual(await self.failure_for(SigningError("no key")), FailureKind.SIGNING_ERROR)
        self.assertEqual(await self.failure_for(IssuanceError("down")), FailureKind.ISSUANCE_ERROR)
        self.assertEqual(
            await self.failure_for(IssuanceError("refused", status_code=403)),
            FailureKind.TOKEN_REJECTED,
        )
        self.assertEqual(await self.failure_for(RuntimeError("bug")), FailureKind.UNEXPECTED_ERROR)

    async def test_null_token_on_supported_site_is_rejection(self):
        self.assertEqual(
            await self.failure_for_result(issued(token=None)),
            FailureKind.TOKEN_REJECTED,
        )

    async def failure_for_result(self, result):
        loop = VerificationLoop(ScriptedAttestor(result), interval_seconds=60)
        await loop.run_cycle()
        return loop.state.failure

    async def test_failure_clears_token(self):
        loop = VerificationLoop(ScriptedAttestor(issued(), collection_error()), interval_seconds=60)
        await loop.run_cycle()
        self.assertIsNotNone(loop.active_token)

        await loop.run_cycle()
        self.assertIsNone(loop.active_token)
        self.assertEqual(loop.last_token_event.token, None)

    async def test_backoff_doubles_caps_and_resets(self):
        attestor = ScriptedAttestor(collection_error())
        loop = VerificationLoop(attestor, interval_seconds=0.05, max_backoff_seconds=0.2)
        self.assertEqual(loop.next_delay(), 0.05)

        delays = []
        for _ in range(4):
            await loop.run_cycle()
            delays.append(loop.next_delay())

        self.assertEqual(delays, [0.05, 0.1, 0.2, 0.2])
        self.assertEqual(loop.consecutive_failures, 4)

        attestor.outcomes = [issued()]
        await loop.run_cycle()
        self.assertEqual(loop.consecutive_failures, 0)
        self.assertEqual(loop.next_delay(), 0.05)

    async def test_loop_keeps_running_through_failures(self):
        attestor = ScriptedAttestor(collection_error())
        loop = VerificationLoop(attestor, interval_seconds=0.01, max_backoff_seconds=0.02)
        loop.start(STORE_URL)

        await wait_until(lambda: len(attestor.calls) >= 3)

        self.assertTrue(loop.running)
        self.assertEqual(loop.state.failure, FailureKind.COLLECTION_ERROR)
        loop.stop()


if __name__ == "__main__":
    unittest.main()
