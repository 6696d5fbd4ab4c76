from fastapi import HTTPException, Request, status

from gtd_agent.agent.orchestrator import AgentOrchestrator


def get_orchestrator(request: Request) -> AgentOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Agent is starting up")
    return orchestrator
