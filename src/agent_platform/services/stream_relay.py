"""Server-Sent Events relay for generation jobs."""

import asyncio
import json
import math
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine, Dict, List, Optional, Tuple

from pydantic import BaseModel

from agent_platform.config import get_settings
from agent_platform.database.models import GenerationStatus
from agent_platform.database.session import get_session_context
from agent_platform.exceptions import DatabaseError, RelayConnectionError
from agent_platform.repositories.generation_repository import GenerationRepository
from agent_platform.services.job_notifier import JobNotifier, get_job_notifier
from agent_platform.utils.logging import get_logger, log_context

logger = get_logger("stream_relay")

HEARTBEAT_FRAME = ":heartbeat\n\n"


class JobState(BaseModel):
    """What the relay reads from a generation row on each poll."""

    status: str
    output_content: str = ""
    error: Optional[str] = None
    created_at: datetime


JobLoader = Callable[[str], Awaitable[Optional[JobState]]]
DisconnectCheck = Callable[[], Awaitable[bool]]


def sse_event(payload: Dict[str, Any]) -> str:
    """Format one `data:` frame."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def elapsed_since(created_at: datetime, now: Optional[datetime] = None) -> int:
    # SQLite hands back naive datetimes; they were written as UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int(math.floor((now - created_at).total_seconds())))


def frame_for_state(state: Optional[JobState]) -> Tuple[str, bool]:
    """Map a job snapshot to its SSE frame and whether it ends the stream."""
    if state is None:
        return sse_event({"event": "error", "message": "Generation not found"}), True
    if state.status == GenerationStatus.COMPLETED:
        return sse_event({"event": "complete", "content": state.output_content}), True
    if state.status == GenerationStatus.FAILED:
        return sse_event({"event": "error", "message": state.error or "Generation failed"}), True
    return (
        sse_event(
            {"event": "progress", "message": f"Processing... {elapsed_since(state.created_at)}s"}
        ),
        False,
    )


async def load_job_state(generation_id: str) -> Optional[JobState]:
    """Read the current state of a generation in a fresh session."""
    async with get_session_context() as session:
        generation = await GenerationRepository(session).get_by_id(generation_id)
        if generation is None:
            return None
        return JobState(
            status=generation.status,
            output_content=generation.output_content or "",
            error=generation.error,
            created_at=generation.created_at,
        )


class TaskScope:
    """
    Owns background tasks for one connection.

    Every task started through the scope is cancelled and awaited when the
    scope exits, whichever way it exits.
    """

    def __init__(self) -> None:
        self._tasks: List[asyncio.Task] = []

    def start(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.append(task)
        return task

    @property
    def active(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def __aenter__(self) -> "TaskScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()


class StreamRelay:
    """
    One relay per open browser connection.

    Emits `connected`, then polls the job row: `progress` while processing,
    then exactly one `complete` or `error` frame before closing. A heartbeat
    comment is written on its own interval. Job completion notifications
    cut the wait between polls short; the row is still the source of truth.
    """

    def __init__(
        self,
        generation_id: str,
        loader: Optional[JobLoader] = None,
        notifier: Optional[JobNotifier] = None,
        poll_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        is_disconnected: Optional[DisconnectCheck] = None,
    ):
        stream_settings = get_settings().stream
        self.generation_id = generation_id
        self.loader = loader or load_job_state
        self.notifier = notifier or get_job_notifier()
        self.poll_interval = poll_interval or stream_settings.poll_interval
        self.heartbeat_interval = heartbeat_interval or stream_settings.heartbeat_interval
        self.is_disconnected = is_disconnected

    async def _poll(self, queue: asyncio.Queue) -> None:
        with log_context(generation_id=self.generation_id):
            while True:
                if self.is_disconnected is not None and await self.is_disconnected():
                    await queue.put(RelayConnectionError(generation_id=self.generation_id))
                    return

                try:
                    state = await self.loader(self.generation_id)
                except DatabaseError as e:
                    logger.error(f"Polling error for generation {self.generation_id}: {e.message}")
                except Exception as e:
                    logger.error(
                        f"Unexpected polling error for generation {self.generation_id}: {e}",
                        exc_info=True,
                    )
                else:
                    frame, terminal = frame_for_state(state)
                    await queue.put((frame, terminal))
                    if terminal:
                        return

                await self.notifier.wait(self.generation_id, self.poll_interval)

    async def _heartbeat(self, queue: asyncio.Queue) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await queue.put((HEARTBEAT_FRAME, False))

    async def events(self) -> AsyncIterator[str]:
        """Yield SSE frames until a terminal frame or disconnect."""
        yield sse_event({"event": "connected"})

        queue: asyncio.Queue = asyncio.Queue()
        self.notifier.watch(self.generation_id)
        try:
            async with TaskScope() as scope:
                scope.start(self._poll(queue), name=f"relay-poll-{self.generation_id}")
                scope.start(self._heartbeat(queue), name=f"relay-heartbeat-{self.generation_id}")

                while True:
                    item = await queue.get()
                    if isinstance(item, RelayConnectionError):
                        logger.info(f"Stream client disconnected: generation={self.generation_id}")
                        return
                    frame, terminal = item
                    yield frame
                    if terminal:
                        logger.debug(f"Stream closed after terminal event: {self.generation_id}")
                        return
        finally:
            self.notifier.unwatch(self.generation_id)

