import asyncio
import logging
from typing import Any, Coroutine


class TaskSpawner:
    """
    Spawns and tracks the background asyncio tasks of the transport.

    Every channel read loop, and every follow-up action the pool schedules
    from an event handler (re-arming a listener, releasing a disconnected
    channel), runs as a task created here. This ensures that:
    - all spawned tasks are tracked until completion
    - unhandled exceptions inside tasks are logged
    - completed tasks are automatically removed from the internal registry
    - owners can wait for their tasks to settle during shutdown
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logging.getLogger("core.helpers.spawn")

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def remaining_tasks(self) -> int:
        """
        Return the number of tasks currently being tracked.
        """
        return len(self._tasks)

    def on_done(self, task: asyncio.Task[Any]) -> None:
        """
        Callback executed when a spawned task completes.

        Cancelled tasks are expected during teardown and are not reported.
        Any other exception is logged. The task is then removed from the
        internal tracking set.
        """
        self._tasks.discard(task)
        if task.cancelled():
            return

        if ex := task.exception():
            self._logger.error(
                f"Error occurred in task {task.get_name()}: {str(ex)}",
                exc_info=ex
            )

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """
        Spawn a coroutine as a background task and track its lifecycle.
        """
        task = self._loop.create_task(coro, name=name)
        task.add_done_callback(self.on_done)
        self._tasks.add(task)
        return task

    async def join(self, timeout: float | None = None) -> None:
        """
        Wait until every tracked task has completed.

        Tasks still running after `timeout` seconds are cancelled. The
        calling task is never waited for, so a spawned task may join.
        """
        pending = {task for task in self._tasks if task is not asyncio.current_task()}
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel("Task cancelled, join timeout exceeded")
