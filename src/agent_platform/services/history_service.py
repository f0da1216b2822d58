"""Generation history: listing, detail, Markdown export and retention cleanup."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.config import get_settings
from agent_platform.database.models import Generation
from agent_platform.exceptions import NotFoundError
from agent_platform.repositories.generation_repository import GenerationRepository
from agent_platform.utils.logging import get_logger

logger = get_logger("history_service")
settings = get_settings()


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _names(generation: Generation) -> Tuple[str, str]:
    agent_name = generation.agent.name if generation.agent else "Unknown agent"
    task_name = generation.task.name if generation.task else "Unknown task"
    return agent_name, task_name


def summarize(content: Optional[str], length: Optional[int] = None) -> str:
    return (content or "")[: length or settings.history.summary_length]


def render_generation_markdown(generation: Generation) -> str:
    """Markdown download of a finished generation."""
    agent_name, task_name = _names(generation)
    lines = [
        "# Generated Content",
        "",
        f"## Task: {task_name}",
        f"## Agent: {agent_name}",
        f"## Generated at: {_iso(generation.created_at)}",
        "",
        "---",
        "",
        generation.output_content or "",
        "",
        "---",
        "",
        "### Input",
        generation.input_text or "No text input",
        "",
    ]
    if generation.file_content:
        lines.extend(["### File Content", generation.file_content, ""])
    return "\n".join(lines)


def render_history_markdown(generation: Generation, exported_at: Optional[datetime] = None) -> str:
    """Markdown export of a history entry, including status and duration."""
    agent_name, task_name = _names(generation)
    exported_at = exported_at or datetime.now(timezone.utc)
    lines = [
        "# Generated Content History",
        "",
        f"## Task: {task_name}",
        f"## Agent: {agent_name}",
        f"## Generated at: {_iso(generation.created_at)}",
        f"## Status: {generation.status}",
        f"## Duration: {generation.duration}s",
        "",
        "---",
        "",
        "## Output",
        "",
        generation.output_content or "",
        "",
        "---",
        "",
        "## Input",
        "",
        "### Text Input",
        generation.input_text or "No text input provided",
        "",
    ]
    if generation.file_name:
        lines.append(f"### File: {generation.file_name}")
    if generation.file_content:
        lines.extend(["", generation.file_content])
    lines.extend(["", "---", "", f"*Exported at: {_iso(exported_at)}*", ""])
    return "\n".join(lines)


class HistoryService:
    """Read and prune persisted generation jobs."""

    def __init__(self, session: AsyncSession):
        self.repo = GenerationRepository(session)

    async def list_history(self, limit: int, offset: int) -> Tuple[list, int]:
        """Return one page of generations (newest first) and the total count."""
        items = await self.repo.list_recent(limit=limit, offset=offset)
        total = await self.repo.count()
        return items, total

    async def get_generation(self, generation_id: str, resource: str = "History item") -> Generation:
        generation = await self.repo.get_by_id(generation_id)
        if not generation:
            raise NotFoundError(resource, generation_id)
        return generation

    async def delete(self, generation_id: str) -> None:
        await self.get_generation(generation_id)
        await self.repo.delete(generation_id)
        logger.info(f"History item deleted: id={generation_id}")

    async def cleanup(self, retention_days: Optional[int] = None) -> int:
        """Delete generations older than the retention window; returns the count."""
        days = retention_days or settings.history.retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        deleted = await self.repo.delete_older_than(cutoff)
        logger.info(f"History cleanup removed {deleted} items older than {days} days")
        return deleted
