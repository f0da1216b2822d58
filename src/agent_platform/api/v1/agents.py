"""Agent endpoints."""

from fastapi import APIRouter, Depends

from agent_platform.auth.dependencies import get_current_user_id
from agent_platform.database.session import get_session_context
from agent_platform.models.generation import AgentConnectionResponse
from agent_platform.services.generation_service import get_generation_service

router = APIRouter(prefix="/agents", tags=["agents"], dependencies=[Depends(get_current_user_id)])


@router.post(
    "/{agent_id}/test-connection",
    response_model=AgentConnectionResponse,
    summary="Test Agent Connection",
    description="Check that the agent's backend accepts its configured URL and token.",
)
async def test_agent_connection(agent_id: str):
    async with get_session_context() as session:
        agent, success = await get_generation_service().test_agent_connection(session, agent_id)
        agent_type = agent.type

    return AgentConnectionResponse(success=success, agent_id=agent_id, type=agent_type)
