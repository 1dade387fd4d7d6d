import unittest

from toolbridge.services.readiness import MAX_READINESS_ATTEMPTS, ReadinessPoller, ReadinessState


class _RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class _SnapshotCounter:
    def __init__(self) -> None:
        self.requests = 0

    async def request_snapshot(self):
        self.requests += 1
        return None


class _ScriptedProbe:
    def __init__(self, states) -> None:
        self._states = list(states)
        self.calls = 0

    async def __call__(self) -> ReadinessState:
        self.calls += 1
        item = self._states[min(self.calls, len(self._states)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


NOT_READY = ReadinessState(ready=False, last_error="not ready")


class ReadinessPollerTests(unittest.IsolatedAsyncioTestCase):
    async def test_ready_on_sixth_probe(self):
        sleep = _RecordingSleep()
        poller = ReadinessPoller(sleep=sleep)
        probe = _ScriptedProbe([NOT_READY] * 5 + [ReadinessState(ready=True, observed_identity="Mario")])

        state = await poller.wait_until_ready("tab-7", probe, attempts=10, delay_seconds=0.12)

        self.assertTrue(state.ready)
        self.assertEqual(state.attempt, 6)
        self.assertEqual(probe.calls, 6)
        self.assertEqual(sleep.calls, [0.12] * 5)

    async def test_exhaustion_returns_last_state(self):
        sleep = _RecordingSleep()
        poller = ReadinessPoller(sleep=sleep)
        probe = _ScriptedProbe([NOT_READY])

        state = await poller.wait_until_ready("tab-7", probe, attempts=4, delay_seconds=0.5)

        self.assertFalse(state.ready)
        self.assertEqual(state.attempt, 4)
        self.assertEqual(state.last_error, "not ready")
        self.assertEqual(probe.calls, 4)
        self.assertEqual(len(sleep.calls), 3)

    async def test_resyncs_snapshot_every_third_failed_attempt(self):
        snapshots = _SnapshotCounter()
        poller = ReadinessPoller(snapshots, sleep=_RecordingSleep(), resync_every=3)
        await poller.wait_until_ready("tab-7", _ScriptedProbe([NOT_READY]), attempts=7, delay_seconds=0)
        self.assertEqual(snapshots.requests, 2)

    async def test_identity_mismatch_keeps_polling(self):
        poller = ReadinessPoller(sleep=_RecordingSleep())
        probe = _ScriptedProbe(
            [
                ReadinessState(ready=True, observed_identity="Luigi"),
                ReadinessState(ready=True, observed_identity="+1 555 123 4567"),
            ]
        )

        state = await poller.wait_until_ready(
            "tab-7",
            probe,
            attempts=5,
            delay_seconds=0,
            expected_identity="5551234567",
        )

        self.assertTrue(state.ready)
        self.assertEqual(probe.calls, 2)

    async def test_identity_mismatch_on_exhaustion(self):
        poller = ReadinessPoller(sleep=_RecordingSleep())
        probe = _ScriptedProbe([ReadinessState(ready=True, observed_identity="Luigi")])
        state = await poller.wait_until_ready(
            "tab-7", probe, attempts=2, delay_seconds=0, expected_identity="Mario"
        )
        self.assertFalse(state.ready)
        self.assertEqual(state.last_error, "identity mismatch")

    async def test_probe_exception_counts_as_not_ready(self):
        poller = ReadinessPoller(sleep=_RecordingSleep())
        probe = _ScriptedProbe([RuntimeError("token=abc123 expired"), ReadinessState(ready=True)])

        state = await poller.wait_until_ready("tab-7", probe, attempts=3, delay_seconds=0)

        self.assertTrue(state.ready)
        self.assertEqual(probe.calls, 2)

    async def test_probe_exception_message_is_redacted(self):
        poller = ReadinessPoller(sleep=_RecordingSleep())
        probe = _ScriptedProbe([RuntimeError("token=abc123 expired")])
        state = await poller.wait_until_ready("tab-7", probe, attempts=1, delay_seconds=0)
        self.assertFalse(state.ready)
        self.assertNotIn("abc123", state.last_error)

    async def test_attempts_are_clamped(self):
        sleep = _RecordingSleep()
        poller = ReadinessPoller(sleep=sleep)
        probe = _ScriptedProbe([NOT_READY])
        await poller.wait_until_ready("tab-7", probe, attempts=500, delay_seconds=0)
        self.assertEqual(probe.calls, MAX_READINESS_ATTEMPTS)

        probe = _ScriptedProbe([NOT_READY])
        await poller.wait_until_ready("tab-7", probe, attempts=0, delay_seconds=0)
        self.assertEqual(probe.calls, 1)


if __name__ == "__main__":
    unittest.main()
