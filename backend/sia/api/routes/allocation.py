import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from sia.api.deps import get_orchestrator
from sia.schemas.allocation import (
    ProposalOut,
    ResolvedConfigOut,
    RunConfig,
    RunState,
    SaveResult,
    Semester,
)
from sia.services.orchestrator import AllocationOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/config/defaults", response_model=ResolvedConfigOut)
async def get_default_config(
    orchestrator: AllocationOrchestrator = Depends(get_orchestrator),
) -> ResolvedConfigOut:
    resolved = await orchestrator.resolver.resolve_defaults()
    semesters = await orchestrator.resolver.load_semesters()
    config = resolved.config
    if not config.semester_name and semesters:
        config = config.model_copy(update={"semester_name": semesters[0].name})
    return ResolvedConfigOut(config=config, fallback=resolved.fallback, semesters=semesters)


@router.get("/semesters", response_model=list[Semester])
async def list_semesters(orchestrator: AllocationOrchestrator = Depends(get_orchestrator)) -> list[Semester]:
    return await orchestrator.resolver.load_semesters()


@router.post("/runs", response_model=RunState, status_code=status.HTTP_202_ACCEPTED)
async def start_run(
    payload: RunConfig,
    orchestrator: AllocationOrchestrator = Depends(get_orchestrator),
) -> RunState:
    orchestrator.controller.start(payload)
    return orchestrator.controller.state


@router.get("/runs/current", response_model=RunState)
async def get_current_run(orchestrator: AllocationOrchestrator = Depends(get_orchestrator)) -> RunState:
    return orchestrator.controller.state


@router.delete("/runs/current", response_model=RunState)
async def cancel_current_run(orchestrator: AllocationOrchestrator = Depends(get_orchestrator)) -> RunState:
    return await orchestrator.controller.cancel()


@router.websocket("/runs/stream")
async def stream_run_state(
    websocket: WebSocket,
    orchestrator: AllocationOrchestrator = Depends(get_orchestrator),
) -> None:
    hub = orchestrator.controller.hub
    await hub.connect(websocket)
    try:
        await websocket.send_json({"event": "run.state", "state": orchestrator.controller.state.model_dump(mode="json")})
        while True:
            # Clients only listen; reading keeps the disconnect visible.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Run-state websocket disconnected")
    finally:
        await hub.disconnect(websocket)


@router.get("/proposal", response_model=ProposalOut)
async def get_proposal(orchestrator: AllocationOrchestrator = Depends(get_orchestrator)) -> ProposalOut:
    reconciler = orchestrator.reconciler
    if reconciler.proposal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No allocation proposal available")
    return ProposalOut(
        proposal=reconciler.proposal,
        save_state=reconciler.snapshot(),
        pending=reconciler.pending_count(),
    )


@router.post("/proposal/save", response_model=SaveResult)
async def save_all_assignments(orchestrator: AllocationOrchestrator = Depends(get_orchestrator)) -> SaveResult:
    return await orchestrator.reconciler.save_all()


@router.post("/proposal/assignments/{offering_id}/save", response_model=SaveResult)
async def save_assignment(
    offering_id: int,
    orchestrator: AllocationOrchestrator = Depends(get_orchestrator),
) -> SaveResult:
    return await orchestrator.reconciler.save_one(offering_id)
