"""Tests for generation history listing, export and retention."""

from datetime import datetime, timedelta, timezone

import pytest

from agent_platform.database.models import Agent, Generation, GenerationStatus, Task
from agent_platform.exceptions import NotFoundError
from agent_platform.repositories.generation_repository import GenerationRepository
from agent_platform.services.history_service import (
    HistoryService,
    render_generation_markdown,
    render_history_markdown,
    summarize,
)


async def _generation(session, agent, task, days_ago=0, **kwargs):
    kwargs.setdefault("status", GenerationStatus.COMPLETED)
    generation = await GenerationRepository(session).create(
        user_id="user-1",
        agent_id=agent.id,
        task_id=task.id,
        created_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
        **kwargs,
    )
    await session.commit()
    return generation


def _detached_generation(**kwargs) -> Generation:
    return Generation(
        user_id="user-1",
        agent=Agent(name="Writer"),
        task=Task(name="Summarize"),
        status=GenerationStatus.COMPLETED,
        duration=4,
        created_at=datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc),
        **kwargs,
    )


class TestMarkdown:
    def test_generation_download(self):
        markdown = render_generation_markdown(
            _detached_generation(output_content="The summary", input_text="Raw notes")
        )

        assert markdown.startswith("# Generated Content\n")
        assert "## Task: Summarize" in markdown
        assert "## Agent: Writer" in markdown
        assert "The summary" in markdown
        assert "### Input\nRaw notes" in markdown
        assert "### File Content" not in markdown

    def test_history_export_includes_status_file_and_export_time(self):
        exported_at = datetime(2026, 3, 2, tzinfo=timezone.utc)
        markdown = render_history_markdown(
            _detached_generation(
                output_content="Out", file_name="notes.txt", file_content="File body"
            ),
            exported_at=exported_at,
        )

        assert "## Status: completed" in markdown
        assert "## Duration: 4s" in markdown
        assert "No text input provided" in markdown
        assert "### File: notes.txt" in markdown
        assert "File body" in markdown
        assert markdown.rstrip().endswith(f"*Exported at: {exported_at.isoformat()}*")

    def test_summarize_truncates(self):
        assert summarize("abcdef", length=3) == "abc"
        assert summarize(None) == ""
        assert len(summarize("x" * 500)) == 200


class TestHistoryService:
    @pytest.mark.asyncio
    async def test_list_newest_first_with_total(self, session, agent_and_task):
        agent, task = agent_and_task
        older = await _generation(session, agent, task, days_ago=2, output_content="old")
        newer = await _generation(session, agent, task, output_content="new")

        items, total = await HistoryService(session).list_history(limit=1, offset=0)

        assert total == 2
        assert [g.id for g in items] == [newer.id]

        items, _ = await HistoryService(session).list_history(limit=1, offset=1)
        assert [g.id for g in items] == [older.id]

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_expired(self, session, agent_and_task):
        agent, task = agent_and_task
        expired = await _generation(session, agent, task, days_ago=40)
        recent = await _generation(session, agent, task, days_ago=1)

        service = HistoryService(session)
        deleted = await service.cleanup()
        await session.commit()

        assert deleted == 1
        assert await GenerationRepository(session).get_by_id(recent.id) is not None
        with pytest.raises(NotFoundError):
            await service.get_generation(expired.id)

    @pytest.mark.asyncio
    async def test_cleanup_honours_custom_retention(self, session, agent_and_task):
        agent, task = agent_and_task
        await _generation(session, agent, task, days_ago=3)

        assert await HistoryService(session).cleanup(retention_days=7) == 0
        assert await HistoryService(session).cleanup(retention_days=2) == 1

    @pytest.mark.asyncio
    async def test_delete(self, session, agent_and_task):
        agent, task = agent_and_task
        generation = await _generation(session, agent, task)
        service = HistoryService(session)

        await service.delete(generation.id)
        await session.commit()

        with pytest.raises(NotFoundError):
            await service.delete(generation.id)
