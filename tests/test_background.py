import unittest

from toolbridge.services.background import BackgroundTaskQueue


class BackgroundTaskQueueTests(unittest.IsolatedAsyncioTestCase):
    async def test_jobs_run_in_order(self):
        queue = BackgroundTaskQueue()
        seen = []

        def make(value):
            async def job():
                seen.append(value)

            return job

        for value in range(3):
            self.assertTrue(queue.submit(f"job-{value}", make(value)))
        await queue.join()
        await queue.stop()

        self.assertEqual(seen, [0, 1, 2])
        self.assertEqual(queue.completed, 3)

    async def test_failures_are_kept_not_raised(self):
        queue = BackgroundTaskQueue()

        async def broken():
            raise RuntimeError("password=hunter2 rejected")

        async def fine():
            return None

        with self.assertLogs("toolbridge.services.background", level="WARNING"):
            queue.submit("sync", broken)
            queue.submit("after", fine)
            await queue.join()
        await queue.stop()

        self.assertEqual(len(queue.failures), 1)
        self.assertEqual(queue.failures[0].name, "sync")
        self.assertNotIn("hunter2", queue.failures[0].error)
        self.assertEqual(queue.completed, 1)

    async def test_full_queue_rejects_new_jobs(self):
        queue = BackgroundTaskQueue(max_pending=1)

        async def job():
            return None

        self.assertTrue(queue.submit("first", job))
        with self.assertLogs("toolbridge.services.background", level="WARNING"):
            self.assertFalse(queue.submit("second", job))
        await queue.join()
        await queue.stop()

    async def test_stop_without_start(self):
        await BackgroundTaskQueue().stop()


if __name__ == "__main__":
    unittest.main()
