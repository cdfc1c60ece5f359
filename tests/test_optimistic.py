import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "backend") not in sys.path:
    sys.path.insert(0, str(ROOT / "backend"))

from backend_errors import GatewayError
from backend_optimistic import run_optimistic


class RunOptimisticTests(unittest.IsolatedAsyncioTestCase):
    async def test_success_runs_apply_then_confirm(self):
        events = []

        async def remote():
            events.append("remote")
            return 42

        outcome = await run_optimistic(
            lambda: events.append("apply"),
            remote,
            confirm=lambda result: events.append(("confirm", result)),
            compensate=lambda e: events.append("compensate"),
        )
        self.assertTrue(outcome.ok)
        self.assertEqual(42, outcome.result)
        self.assertEqual(["apply", "remote", ("confirm", 42)], events)

    async def test_failure_runs_compensate_and_returns_error(self):
        events = []

        async def remote():
            raise GatewayError("boom")

        async def compensate(e):
            events.append(("compensate", str(e)))

        outcome = await run_optimistic(
            lambda: events.append("apply"), remote,
            confirm=lambda result: events.append("confirm"),
            compensate=compensate,
        )
        self.assertFalse(outcome.ok)
        self.assertIsInstance(outcome.error, GatewayError)
        self.assertEqual(["apply", ("compensate", "boom")], events)

    async def test_failing_compensate_is_logged_not_raised(self):
        async def remote():
            raise GatewayError("boom")

        def compensate(e):
            raise RuntimeError("also broken")

        with self.assertLogs("backend_optimistic", level="ERROR") as logs:
            outcome = await run_optimistic(None, remote, compensate=compensate, label="rename column")
        self.assertFalse(outcome.ok)
        self.assertTrue(any("rename column" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
