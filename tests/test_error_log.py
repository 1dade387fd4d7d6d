import unittest
from datetime import datetime, timedelta, timezone

from toolbridge.services.error_log import STORAGE_KEY, ErrorLog
from toolbridge.services.kv_store import InMemoryKeyValueStore


class _ManualClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def __call__(self) -> datetime:
        return self.now


class ErrorLogTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = _ManualClock()
        self.store = InMemoryKeyValueStore()
        self.log = ErrorLog(self.store, max_items=20, coalesce_window_seconds=20, clock=self.clock)

    async def test_repeated_failures_coalesce(self):
        for _ in range(12):
            await self.log.record("db.queryRead", "timeout", {"sql": "select 1"})
            self.clock.advance(1.25)

        entries = self.log.entries()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].count, 12)
        self.assertEqual(entries[0].created_at, datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))

    async def test_different_error_or_tool_appends(self):
        await self.log.record("db.queryRead", "timeout")
        await self.log.record("db.queryRead", "syntax error")
        await self.log.record("db.queryWrite", "syntax error")
        self.assertEqual([entry.count for entry in self.log.entries()], [1, 1, 1])

    async def test_gap_longer_than_window_starts_new_entry(self):
        await self.log.record("db.queryRead", "timeout")
        self.clock.advance(21)
        await self.log.record("db.queryRead", "timeout")
        self.assertEqual(len(self.log.entries()), 2)

    async def test_only_most_recent_entry_coalesces(self):
        await self.log.record("db.queryRead", "timeout")
        await self.log.record("smtp.sendMail", "relay down")
        await self.log.record("db.queryRead", "timeout")
        self.assertEqual(len(self.log.entries()), 3)

    async def test_bounded_by_max_items(self):
        log = ErrorLog(InMemoryKeyValueStore(), max_items=3, clock=self.clock)
        for index in range(5):
            await log.record("browser.focusTab", f"no tab {index}")
        self.assertEqual([entry.error for entry in log.entries()], ["no tab 2", "no tab 3", "no tab 4"])

    async def test_entries_expire_by_age(self):
        log = ErrorLog(InMemoryKeyValueStore(), max_age_seconds=60, clock=self.clock)
        await log.record("browser.focusTab", "no tab")
        self.clock.advance(61)
        self.assertEqual(log.entries(), [])
        self.assertEqual(log.summarize_for_prompt(), "")

    async def test_sensitive_values_are_redacted(self):
        entry = await self.log.record(
            "db.queryRead",
            "connect failed: postgres://app:s3cret@db/main",
            {"connectionUrl": "postgres://app:s3cret@db/main", "sql": "select 1"},
        )
        self.assertNotIn("s3cret", entry.error)
        self.assertNotIn("s3cret", entry.args_summary)
        self.assertIn("select 1", entry.args_summary)

    async def test_long_errors_are_truncated(self):
        entry = await self.log.record("integration.call", "x" * 1000)
        self.assertEqual(len(entry.error), 400)

    async def test_summary_lists_newest_first_with_repeat_counts(self):
        await self.log.record("db.queryRead", "timeout")
        await self.log.record("db.queryRead", "timeout")
        await self.log.record("db.queryRead", "timeout")
        await self.log.record("smtp.sendMail", "relay down")

        summary = self.log.summarize_for_prompt()
        lines = summary.splitlines()

        self.assertTrue(lines[0].startswith("Recent tool failures"))
        self.assertTrue(lines[1].startswith("- smtp.sendMail: relay down"))
        self.assertTrue(lines[2].startswith("- db.queryRead (x3): timeout"))

    async def test_persisted_entries_reload(self):
        await self.log.record("db.queryRead", "timeout")
        await self.log.record("db.queryRead", "timeout")
        self.assertEqual(len(await self.store.read(STORAGE_KEY)), 1)

        reloaded = ErrorLog(self.store, clock=self.clock)
        self.assertEqual(await reloaded.load(), 1)
        self.assertEqual(reloaded.entries()[0].count, 2)

    async def test_load_ignores_malformed_rows(self):
        store = InMemoryKeyValueStore(
            {STORAGE_KEY: [{"tool": "db.queryRead"}, {"tool": "x", "error": "y", "created_at": "yesterday"}, 7]}
        )
        log = ErrorLog(store, clock=self.clock)
        self.assertEqual(await log.load(), 0)


if __name__ == "__main__":
    unittest.main()
