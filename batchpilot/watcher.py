"""
CompletionWatcher - block until every task of a job has completed.

Only the id/state projection of the task list is polled. Exit codes are
read later, during result collection.
"""

import logging
import time

from batchpilot.clients.base import ID_STATE_SELECT, RemoteClient
from batchpilot.errors import CompletionTimeout
from batchpilot.waiting import Clock, Sleep, WaitOutcome, wait_until

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10


class CompletionWatcher:
    """Polls task states until all tasks finish or the timeout elapses."""

    def __init__(
        self,
        client: RemoteClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        self._client = client
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._remaining = 0

    def _all_completed(self, job_id: str) -> bool:
        tasks = self._client.list_tasks(job_id, select=ID_STATE_SELECT)
        self._remaining = sum(1 for task in tasks if not task.is_completed)
        return self._remaining == 0

    def wait_for_completion(self, job_id: str, timeout: float) -> None:
        """
        Wait until all tasks of job_id report completed.

        A job without tasks counts as complete.

        Raises:
            CompletionTimeout: If tasks are still incomplete after timeout seconds
        """
        logger.info(f"Waiting for tasks of job {job_id} to complete (timeout {timeout / 60:g}m)")

        def on_tick(elapsed: float) -> None:
            logger.info(f"  {self._remaining} task(s) still running ({elapsed:.0f}s)")

        outcome = wait_until(
            lambda: self._all_completed(job_id),
            interval=self.poll_interval,
            timeout=timeout,
            clock=self._clock,
            sleep=self._sleep,
            on_tick=on_tick,
        )
        if outcome == WaitOutcome.TIMED_OUT:
            raise CompletionTimeout(
                f"{self._remaining} task(s) of job {job_id} did not complete", timeout
            )
        logger.info(f"All tasks of job {job_id} completed")
