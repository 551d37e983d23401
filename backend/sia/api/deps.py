from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection

from sia.services.orchestrator import AllocationOrchestrator


def get_orchestrator(connection: HTTPConnection) -> AllocationOrchestrator:
    orchestrator = getattr(connection.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Orchestrator is not ready")
    return orchestrator
