"""API v1 router aggregation.

All v1 endpoints are prefixed with `/api/v1`.

Routers included:
- Knowledge bases, documents and search (`/knowledge-bases/*`, `/documents/*`)
- Generation (`/generation/*`)
- History (`/history/*`)
- Agents (`/agents/*`)
- Internal jobs (`/jobs/*`, X-Internal-API-Key)

Identity:
- Endpoints read the caller from the `X-User-ID` header set by the gateway
- `/generation/stream` authenticates with the `token` query parameter instead
"""

from fastapi import APIRouter

from agent_platform.api.v1 import agents, generation, history, jobs, knowledge
from agent_platform.config import get_settings

router = APIRouter(
    prefix=get_settings().api_v1_prefix,
    tags=["v1"],
    responses={
        404: {"description": "Not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

router.include_router(knowledge.router)
router.include_router(generation.router)
router.include_router(history.router)
router.include_router(agents.router)
router.include_router(jobs.router)


@router.get(
    "/",
    summary="API Information",
    description="Get API version and status information",
    tags=["v1"],
)
async def api_info():
    """Return the API version and its endpoint groups. Public."""
    prefix = get_settings().api_v1_prefix
    return {
        "version": "v1",
        "status": "active",
        "endpoints": {
            "knowledge-bases": f"{prefix}/knowledge-bases",
            "documents": f"{prefix}/documents",
            "generation": f"{prefix}/generation",
            "history": f"{prefix}/history",
            "agents": f"{prefix}/agents",
        },
    }
