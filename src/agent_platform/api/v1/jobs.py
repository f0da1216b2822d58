"""Internal job endpoints (triggered by schedulers; require internal API key)."""

import logging

from fastapi import APIRouter, status

from agent_platform.auth.internal_service import InternalAuthDep
from agent_platform.database.session import get_session_context
from agent_platform.models.generation import HistoryCleanupResponse
from agent_platform.services.history_service import HistoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post(
    "/cleanup-history",
    response_model=HistoryCleanupResponse,
    status_code=status.HTTP_200_OK,
    summary="Cleanup old generation history",
    description=(
        "Deletes generations older than HISTORY_RETENTION_DAYS. Intended to be called "
        "periodically by a scheduler. Requires X-Internal-API-Key."
    ),
    dependencies=[InternalAuthDep],
)
async def cleanup_history():
    async with get_session_context() as session:
        deleted = await HistoryService(session).cleanup()
        await session.commit()

    logger.info(f"Scheduled history cleanup deleted {deleted} items")
    return HistoryCleanupResponse(message=f"Deleted {deleted} old history items", deleted=deleted)
