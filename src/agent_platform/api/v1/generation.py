"""Generation endpoints: start a job, stream its progress, download the result."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse

from agent_platform.auth.dependencies import StreamTokenDep, get_current_user_id
from agent_platform.config import get_settings
from agent_platform.database.session import get_session_context
from agent_platform.models.generation import GenerationStartRequest, GenerationStartResponse
from agent_platform.services.generation_service import GenerationInput, get_generation_service
from agent_platform.services.history_service import HistoryService, render_generation_markdown
from agent_platform.services.stream_relay import StreamRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generation", tags=["generation"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post(
    "/start",
    response_model=GenerationStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start Generation",
    description=(
        "Create a generation job and run it in the background. "
        "Progress and the result are delivered on `streamUrl`."
    ),
)
async def start_generation(
    request: GenerationStartRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
):
    service = get_generation_service()

    async with get_session_context() as session:
        started = await service.start_generation(
            session,
            user_id=user_id,
            agent_id=request.agent_id,
            task_id=request.task_id,
            generation_input=GenerationInput(
                text=request.input.text,
                file_name=request.input.file_name,
                file_content=request.input.file_content,
            ),
        )
        await session.commit()

    # Runs after the response is sent
    background_tasks.add_task(service.run_generation, started)

    prefix = get_settings().api_v1_prefix
    return GenerationStartResponse(
        generation_id=started.generation_id,
        status="starting",
        stream_url=f"{prefix}/generation/stream?generationId={started.generation_id}",
    )


@router.get(
    "/stream",
    summary="Stream Generation",
    description=(
        "Server-Sent Events: `connected`, `progress`, then one `complete` or `error` "
        "event; `:heartbeat` comments keep idle connections open."
    ),
    dependencies=[StreamTokenDep],
)
async def stream_generation(
    request: Request,
    generation_id: str = Query(..., alias="generationId", description="Generation ID"),
):
    relay = StreamRelay(generation_id, is_disconnected=request.is_disconnected)
    logger.info(f"Stream opened for generation {generation_id}")
    return StreamingResponse(
        relay.events(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get(
    "/download/{generation_id}",
    summary="Download Generation",
    description="Download the generated content as a Markdown file.",
    dependencies=[Depends(get_current_user_id)],
)
async def download_generation(generation_id: str):
    async with get_session_context() as session:
        generation = await HistoryService(session).get_generation(generation_id, "Generation")
        markdown = render_generation_markdown(generation)

    return Response(
        content=markdown,
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="generation-{generation_id}.md"'},
    )
