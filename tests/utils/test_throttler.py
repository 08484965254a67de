import asyncio
import unittest
from asyncio import TaskGroup

from bloomdedup.utils.throttler import Throttler


class ThrottlerTest(unittest.TestCase):
    def test_concurrency_limit(self):
        running = 0
        peak = 0
        finished = []

        async def job(index):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.001 * (index % 3))
            running -= 1
            finished.append(index)

        async def run():
            async with TaskGroup() as tg:
                throttler = Throttler(tg, 3)
                for i in range(20):
                    await throttler.schedule(job(i), name=f'job-{i}')

        asyncio.run(run())

        self.assertEqual(3, peak)
        self.assertEqual(list(range(20)), sorted(finished))

    def test_invalid_concurrency(self):
        with self.assertRaises(ValueError):
            Throttler(TaskGroup(), 0)


if __name__ == '__main__':
    unittest.main()
