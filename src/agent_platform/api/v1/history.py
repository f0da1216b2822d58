"""Generation history endpoints."""

from fastapi import APIRouter, Depends, Query, Response

from agent_platform.auth.dependencies import get_current_user_id
from agent_platform.config import get_settings
from agent_platform.database.models import Generation
from agent_platform.database.session import get_session_context
from agent_platform.models.generation import (
    HistoryCleanupResponse,
    HistoryDeleteResponse,
    HistoryDetailResponse,
    HistoryInput,
    HistoryItem,
    HistoryListResponse,
)
from agent_platform.services.history_service import (
    HistoryService,
    render_history_markdown,
    summarize,
)

router = APIRouter(prefix="/history", tags=["history"], dependencies=[Depends(get_current_user_id)])


def _to_item(generation: Generation) -> HistoryItem:
    return HistoryItem(
        id=generation.id,
        agent_name=generation.agent.name if generation.agent else "",
        task_name=generation.task.name if generation.task else "",
        created_at=generation.created_at,
        summary=summarize(generation.output_content),
        status=generation.status,
    )


@router.get("", response_model=HistoryListResponse, summary="List History")
async def list_history(
    limit: int = Query(
        get_settings().history.page_size, ge=1, le=200, description="Page size"
    ),
    offset: int = Query(0, ge=0, description="Items to skip"),
):
    async with get_session_context() as session:
        items, total = await HistoryService(session).list_history(limit=limit, offset=offset)
        history = [_to_item(g) for g in items]

    return HistoryListResponse(history=history, total=total, has_more=offset + limit < total)


# Declared before "/{history_id}" so "cleanup" is not taken as an id
@router.delete("/cleanup", response_model=HistoryCleanupResponse, summary="Clean Up History")
async def cleanup_history():
    async with get_session_context() as session:
        deleted = await HistoryService(session).cleanup()
        await session.commit()

    return HistoryCleanupResponse(message=f"Deleted {deleted} old history items", deleted=deleted)


@router.get("/{history_id}", response_model=HistoryDetailResponse, summary="Get History Item")
async def get_history_item(history_id: str):
    async with get_session_context() as session:
        generation = await HistoryService(session).get_generation(history_id)
        item = _to_item(generation)

        return HistoryDetailResponse(
            **item.model_dump(),
            full_content=generation.output_content or "",
            input=HistoryInput(text=generation.input_text, file_name=generation.file_name),
            duration=generation.duration,
            error=generation.error,
        )


@router.get("/{history_id}/export", summary="Export History Item")
async def export_history_item(history_id: str):
    async with get_session_context() as session:
        generation = await HistoryService(session).get_generation(history_id)
        markdown = render_history_markdown(generation)

    return Response(
        content=markdown,
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="history-{history_id}.md"'},
    )


@router.delete("/{history_id}", response_model=HistoryDeleteResponse, summary="Delete History Item")
async def delete_history_item(history_id: str):
    async with get_session_context() as session:
        await HistoryService(session).delete(history_id)
        await session.commit()

    return HistoryDeleteResponse(message="History item deleted successfully", id=history_id)
