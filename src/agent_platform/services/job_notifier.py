"""In-process completion signals for generation jobs."""

import asyncio
from typing import Dict, Optional

from agent_platform.utils.logging import get_logger

logger = get_logger("job_notifier")


class JobNotifier:
    """
    Per-job completion events shared by the orchestrator and stream relays.

    The orchestrator calls `notify()` after persisting a terminal state; a
    relay waits on the event with its poll interval as a timeout. The event
    only shortens the wait: relays still re-read the job row, so a job
    finished by another process surfaces on the next poll.

    Events are created on first use and removed by `unwatch()` once the
    last interested party is done with them.
    """

    def __init__(self) -> None:
        self._events: Dict[str, asyncio.Event] = {}
        self._watchers: Dict[str, int] = {}

    def _event(self, job_id: str) -> asyncio.Event:
        event = self._events.get(job_id)
        if event is None:
            event = asyncio.Event()
            self._events[job_id] = event
        return event

    def watch(self, job_id: str) -> asyncio.Event:
        """Register interest in a job and return its event."""
        self._watchers[job_id] = self._watchers.get(job_id, 0) + 1
        return self._event(job_id)

    def unwatch(self, job_id: str) -> None:
        remaining = self._watchers.get(job_id, 0) - 1
        if remaining > 0:
            self._watchers[job_id] = remaining
            return
        self._watchers.pop(job_id, None)
        self._events.pop(job_id, None)

    def notify(self, job_id: str) -> None:
        """Wake every relay watching `job_id`. A job nobody watches is a no-op."""
        event = self._events.get(job_id)
        if event is None:
            return
        event.set()
        logger.debug(f"Notified watchers of generation {job_id}")

    async def wait(self, job_id: str, timeout: float) -> bool:
        """
        Wait up to `timeout` seconds for `job_id`; True if it was notified.

        A notification is consumed by the wait it ends, so the next wait
        blocks again for up to `timeout`.
        """
        event = self._event(job_id)
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        event.clear()
        return True

    def watcher_count(self, job_id: Optional[str] = None) -> int:
        if job_id is not None:
            return self._watchers.get(job_id, 0)
        return sum(self._watchers.values())


_job_notifier: Optional[JobNotifier] = None


def get_job_notifier() -> JobNotifier:
    """Get the process-wide job notifier."""
    global _job_notifier
    if _job_notifier is None:
        _job_notifier = JobNotifier()
    return _job_notifier
