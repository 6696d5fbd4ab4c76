import logging

from fastapi import APIRouter, Depends, Request

from gtd_agent.agent.orchestrator import AgentOrchestrator
from gtd_agent.dependencies import get_orchestrator
from gtd_agent.middleware.rate_limit import turn_limiter
from gtd_agent.schemas.turn import TurnRequest, TurnResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["turns"])


@router.post("/turns", response_model=TurnResponse)
@turn_limiter
async def post_turn(
    request: Request,
    data: TurnRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    """One inbound SMS in, one reply out. Failures come back as a reply, not an error status."""
    logger.info("turn received", extra={"user_id": data.user_id, "length": len(data.message)})
    reply = await orchestrator.handle_turn(data.user_id, data.message, data.now)
    return TurnResponse(response=reply)
