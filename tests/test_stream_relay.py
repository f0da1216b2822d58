"""Tests for the generation SSE relay."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from agent_platform.database.models import GenerationStatus
from agent_platform.exceptions import DatabaseError
from agent_platform.services.job_notifier import JobNotifier
from agent_platform.services.stream_relay import (
    HEARTBEAT_FRAME,
    JobState,
    StreamRelay,
    TaskScope,
    elapsed_since,
    frame_for_state,
    load_job_state,
    sse_event,
)


def _payload(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):-2])


def _state(status, output="", error=None) -> JobState:
    return JobState(
        status=status,
        output_content=output,
        error=error,
        created_at=datetime.now(timezone.utc),
    )


class SequenceLoader:
    """Returns the given states in order, repeating the last one."""

    def __init__(self, *states):
        self.states = list(states)
        self.calls = 0

    async def __call__(self, generation_id):
        self.calls += 1
        item = self.states[min(self.calls - 1, len(self.states) - 1)]
        if isinstance(item, Exception):
            raise item
        return item


def _relay(loader, notifier=None, **kwargs) -> StreamRelay:
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("heartbeat_interval", 60)
    return StreamRelay("gen-1", loader=loader, notifier=notifier or JobNotifier(), **kwargs)


async def _collect(relay: StreamRelay) -> list:
    return [frame async for frame in relay.events()]


class TestFrames:
    def test_sse_event_keeps_unicode(self):
        assert sse_event({"event": "complete", "content": "café"}) == (
            'data: {"event": "complete", "content": "café"}\n\n'
        )

    def test_elapsed_since_floors_and_accepts_naive_times(self):
        now = datetime(2026, 1, 1, 12, 0, 10, 900000, tzinfo=timezone.utc)
        assert elapsed_since(datetime(2026, 1, 1, 12, 0, 0), now=now) == 10
        assert elapsed_since(now + timedelta(seconds=5), now=now) == 0

    def test_frame_mapping(self):
        frame, terminal = frame_for_state(None)
        assert _payload(frame) == {"event": "error", "message": "Generation not found"}
        assert terminal

        frame, terminal = frame_for_state(_state(GenerationStatus.COMPLETED, output="out"))
        assert _payload(frame) == {"event": "complete", "content": "out"}
        assert terminal

        frame, terminal = frame_for_state(_state(GenerationStatus.FAILED))
        assert _payload(frame) == {"event": "error", "message": "Generation failed"}
        assert terminal

        frame, terminal = frame_for_state(_state(GenerationStatus.PROCESSING))
        assert _payload(frame)["event"] == "progress"
        assert _payload(frame)["message"].startswith("Processing... ")
        assert not terminal


class TestStreamRelay:
    @pytest.mark.asyncio
    async def test_progress_then_single_complete(self):
        loader = SequenceLoader(
            _state(GenerationStatus.PROCESSING),
            _state(GenerationStatus.PROCESSING),
            _state(GenerationStatus.COMPLETED, output="hello"),
        )

        frames = await _collect(_relay(loader))

        events = [_payload(f)["event"] for f in frames]
        assert events == ["connected", "progress", "progress", "complete"]
        assert _payload(frames[-1])["content"] == "hello"

    @pytest.mark.asyncio
    async def test_failed_job_ends_with_error(self):
        frames = await _collect(_relay(SequenceLoader(_state(GenerationStatus.FAILED, error="boom"))))

        assert [_payload(f) for f in frames] == [
            {"event": "connected"},
            {"event": "error", "message": "boom"},
        ]

    @pytest.mark.asyncio
    async def test_unknown_job_ends_with_not_found(self):
        frames = await _collect(_relay(SequenceLoader(None)))

        assert _payload(frames[-1]) == {"event": "error", "message": "Generation not found"}

    @pytest.mark.asyncio
    async def test_polling_errors_are_retried(self):
        loader = SequenceLoader(
            DatabaseError("connection lost"),
            _state(GenerationStatus.COMPLETED, output="recovered"),
        )

        frames = await _collect(_relay(loader))

        assert [_payload(f)["event"] for f in frames] == ["connected", "complete"]
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_heartbeats_while_idle(self):
        notifier = JobNotifier()
        relay = _relay(
            SequenceLoader(_state(GenerationStatus.PROCESSING)),
            notifier=notifier,
            poll_interval=60,
            heartbeat_interval=0.01,
        )

        stream = relay.events()
        frames = [await stream.__anext__() for _ in range(3)]
        assert notifier.watcher_count("gen-1") == 1
        await stream.aclose()

        assert _payload(frames[1])["event"] == "progress"
        assert frames[2] == HEARTBEAT_FRAME
        assert notifier.watcher_count() == 0

    @pytest.mark.asyncio
    async def test_disconnect_stops_the_stream(self):
        async def disconnected():
            return True

        frames = await _collect(
            _relay(SequenceLoader(_state(GenerationStatus.PROCESSING)), is_disconnected=disconnected)
        )

        assert [_payload(f)["event"] for f in frames] == ["connected"]

    @pytest.mark.asyncio
    async def test_notification_cuts_the_poll_wait_short(self):
        notifier = JobNotifier()
        loader = SequenceLoader(
            _state(GenerationStatus.PROCESSING),
            _state(GenerationStatus.COMPLETED, output="fast"),
        )
        relay = _relay(loader, notifier=notifier, poll_interval=30)

        stream = relay.events()
        assert _payload(await stream.__anext__())["event"] == "connected"
        assert _payload(await stream.__anext__())["event"] == "progress"
        notifier.notify("gen-1")

        frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
        assert _payload(frame) == {"event": "complete", "content": "fast"}
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_notification_for_unfinished_job_keeps_poll_interval(self):
        notifier = JobNotifier()
        calls = 0

        async def still_processing(generation_id):
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return _state(GenerationStatus.PROCESSING)

        relay = _relay(still_processing, notifier=notifier, poll_interval=0.2)
        stream = relay.events()
        assert _payload(await stream.__anext__())["event"] == "connected"
        assert _payload(await stream.__anext__())["event"] == "progress"
        notifier.notify("gen-1")

        async def drain():
            async for _ in stream:
                pass

        draining = asyncio.create_task(drain())
        await asyncio.sleep(0.5)
        draining.cancel()
        await asyncio.gather(draining, return_exceptions=True)

        # first poll, one early wake, then one poll per interval
        assert calls <= 5
        assert notifier.watcher_count() == 0


class TestTaskScope:
    @pytest.mark.asyncio
    async def test_cancels_tasks_on_exit(self):
        async def forever():
            await asyncio.sleep(3600)

        async with TaskScope() as scope:
            task = scope.start(forever())
            await asyncio.sleep(0)
            assert scope.active == 1

        assert task.cancelled()
        assert scope.active == 0

    @pytest.mark.asyncio
    async def test_cancels_tasks_when_body_raises(self):
        async def forever():
            await asyncio.sleep(3600)

        with pytest.raises(RuntimeError):
            async with TaskScope() as scope:
                task = scope.start(forever())
                raise RuntimeError("handler failed")

        assert task.cancelled()


class TestLoadJobState:
    @pytest.mark.asyncio
    async def test_reads_row(self, session, agent_and_task):
        from agent_platform.repositories.generation_repository import GenerationRepository

        agent, task = agent_and_task
        generation = await GenerationRepository(session).create(
            user_id="u", agent_id=agent.id, task_id=task.id, status=GenerationStatus.PROCESSING
        )
        await session.commit()

        state = await load_job_state(generation.id)

        assert state.status == GenerationStatus.PROCESSING
        assert await load_job_state("missing") is None
