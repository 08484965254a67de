import asyncio
from asyncio import TaskGroup, Semaphore


class Throttler:
    """Limits how many tasks of a TaskGroup run at the same time.

    ``schedule`` waits for a free slot before creating the task, so a producer
    iterating a lazy source only pulls the next item once a slot opens.
    """

    def __init__(self, task_group: TaskGroup, concurrency: int):
        """Initialize the throttler.

        Args:
            task_group: The TaskGroup to which tasks will be added
            concurrency: Maximum number of tasks that can run concurrently
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._task_group = task_group
        self._semaphore = Semaphore(concurrency)

    async def schedule(self, coro, name=None) -> asyncio.Task:
        """Wait for a free slot, then run the coroutine as a task of the group.

        The slot is released when the task finishes, whatever the outcome.
        """
        await self._semaphore.acquire()

        async def wrapper():
            try:
                return await coro
            finally:
                self._semaphore.release()

        try:
            return self._task_group.create_task(wrapper(), name=name)
        except BaseException:
            self._semaphore.release()
            coro.close()
            raise
