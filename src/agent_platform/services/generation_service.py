"""Generation orchestration: job creation and the background agent call."""

import math
import time
from typing import Optional, Tuple

import httpx
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.clients.base import AgentClient
from agent_platform.clients.dify_client import DifyClient
from agent_platform.clients.fastgpt_client import FastGPTClient
from agent_platform.database.models import Agent, AgentType, Generation, GenerationStatus
from agent_platform.database.session import get_session_context
from agent_platform.exceptions import NotFoundError, ValidationError
from agent_platform.repositories.agent_repository import AgentRepository, TaskRepository
from agent_platform.repositories.generation_repository import GenerationRepository
from agent_platform.services.job_notifier import JobNotifier, get_job_notifier
from agent_platform.services.prompt_service import render_task_prompt
from agent_platform.utils.logging import get_logger, log_context

logger = get_logger("generation_service")


class AgentSnapshot(BaseModel):
    """The agent fields a background run needs, detached from any DB session."""

    id: str
    name: str
    type: str
    url: str
    api_token: str

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentSnapshot":
        return cls(
            id=agent.id,
            name=agent.name,
            type=agent.type,
            url=agent.url,
            api_token=agent.api_token,
        )


class GenerationInput(BaseModel):
    text: Optional[str] = None
    file_name: Optional[str] = None
    file_content: Optional[str] = None


class StartedGeneration(BaseModel):
    """A persisted job plus everything needed to run it."""

    generation_id: str
    agent: AgentSnapshot
    prompt: str
    file_content: Optional[str] = None


def get_agent_client(
    agent: AgentSnapshot,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AgentClient:
    """Build the client for an agent's backend kind. Unknown kinds use Dify."""
    if agent.type == AgentType.FASTGPT:
        return FastGPTClient(agent.url, agent.api_token, transport=transport)
    return DifyClient(agent.url, agent.api_token, transport=transport)


def elapsed_seconds(started: float) -> int:
    """Whole seconds since a `time.monotonic()` reading, floored."""
    return int(math.floor(time.monotonic() - started))


class GenerationService:
    """
    Create generation jobs and drive them to a terminal state.

    A job is persisted as `processing` before any upstream call, so the
    caller can return its id immediately. `run_generation` then calls the
    agent outside the request and records `completed` or `failed` exactly
    once. Failures are recorded on the job, never raised to the caller.
    """

    def __init__(
        self,
        notifier: Optional[JobNotifier] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        streaming: bool = True,
    ):
        self.notifier = notifier or get_job_notifier()
        self._transport = transport
        self.streaming = streaming

    async def start_generation(
        self,
        session: AsyncSession,
        user_id: str,
        agent_id: str,
        task_id: str,
        generation_input: GenerationInput,
    ) -> StartedGeneration:
        """
        Validate the agent and task, render the prompt and persist the job.

        Raises:
            ValidationError: If no input was given
            NotFoundError: If the agent is missing or inactive, or the task is missing
        """
        if not (generation_input.text or generation_input.file_content):
            raise ValidationError("Input text or file content is required")

        agent = await AgentRepository(session).get_active(agent_id)
        if not agent:
            raise NotFoundError("Agent", agent_id, details={"reason": "not found or inactive"})

        task = await TaskRepository(session).get_by_id(task_id)
        if not task:
            raise NotFoundError("Task", task_id)

        prompt = render_task_prompt(
            task.prompt_template, generation_input.text, generation_input.file_content
        )

        generation = await GenerationRepository(session).create(
            user_id=user_id,
            agent_id=agent.id,
            task_id=task.id,
            input_text=generation_input.text,
            file_name=generation_input.file_name,
            file_content=generation_input.file_content,
            output_content="",
            duration=0,
            status=GenerationStatus.PROCESSING,
        )

        logger.info(
            f"Generation started: id={generation.id}, agent={agent.id}, task={task.id}",
            extra={"generation_id": generation.id, "user_id": user_id},
        )
        return StartedGeneration(
            generation_id=generation.id,
            agent=AgentSnapshot.from_agent(agent),
            prompt=prompt,
            file_content=generation_input.file_content or None,
        )

    async def test_agent_connection(self, session: AsyncSession, agent_id: str) -> Tuple[Agent, bool]:
        """Check that an agent's backend is reachable with its stored token."""
        agent = await AgentRepository(session).get_by_id(agent_id)
        if not agent:
            raise NotFoundError("Agent", agent_id)

        client = get_agent_client(AgentSnapshot.from_agent(agent), transport=self._transport)
        success = await client.test_connection()
        logger.info(f"Agent connection test: id={agent_id}, type={agent.type}, success={success}")
        return agent, success

    async def call_agent(self, agent: AgentSnapshot, prompt: str, file_content: Optional[str]) -> str:
        """Call the agent and return its full output, fragments joined in arrival order."""
        client = get_agent_client(agent, transport=self._transport)
        if not self.streaming:
            return await client.complete(prompt, file_content)

        fragments = []
        async for fragment in client.stream(prompt, file_content):
            fragments.append(fragment)
        return "".join(fragments)

    async def run_generation(self, started: StartedGeneration) -> Optional[Generation]:
        """Run a started job to completion. Intended for a background task."""
        generation_id = started.generation_id
        start = time.monotonic()

        with log_context(generation_id=generation_id):
            try:
                output = await self.call_agent(
                    started.agent, started.prompt, started.file_content
                )
            except Exception as e:
                duration = elapsed_seconds(start)
                message = getattr(e, "message", None) or str(e) or e.__class__.__name__
                logger.error(
                    f"Generation failed: id={generation_id}, error={message}",
                    extra={"agent_type": started.agent.type},
                )
                return await self._finish(
                    generation_id, GenerationStatus.FAILED, duration, error=message
                )

            duration = elapsed_seconds(start)
            logger.info(
                f"Generation completed: id={generation_id}, chars={len(output)}, "
                f"duration={duration}s"
            )
            return await self._finish(
                generation_id, GenerationStatus.COMPLETED, duration, output_content=output
            )

    async def _finish(
        self,
        generation_id: str,
        status: str,
        duration: int,
        output_content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Generation]:
        async with get_session_context() as session:
            repo = GenerationRepository(session)
            changed = await repo.finish(
                generation_id,
                status,
                duration,
                output_content=output_content,
                error=error,
            )
            if not changed:
                logger.warning(
                    f"Generation {generation_id} was already terminal or deleted; "
                    f"{status} result dropped"
                )
            await session.commit()
            generation = await repo.get_by_id(generation_id)

        # Only once the terminal state is committed
        self.notifier.notify(generation_id)
        return generation


_generation_service: Optional[GenerationService] = None


def get_generation_service() -> GenerationService:
    """Get the shared generation service."""
    global _generation_service
    if _generation_service is None:
        _generation_service = GenerationService()
    return _generation_service
