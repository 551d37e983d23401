from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from datetime import datetime, timezone
import logging
import math
import uuid

from sia.core.exceptions import AppError, InvalidConfig, RemoteError, RunAlreadyActive
from sia.schemas.allocation import AllocationProposal, RunConfig, RunState, RunStatus
from sia.services.run_state_hub import RunStateHub
from sia.services.scheduling_client import SchedulingBackend
from sia.services.stage_animator import StageAnimator, StageEvent

logger = logging.getLogger(__name__)

ProposalListener = Callable[[AllocationProposal], None]
AnimatorFactory = Callable[[RunConfig], StageAnimator]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_generation(overall_progress_pct: float, generations: int) -> int:
    return min(generations, max(0, math.floor(overall_progress_pct / 100.0 * generations)))


class RunController:
    """Owns the lifecycle of one optimizer run at a time.

    A run is two tasks joined by a driver: the remote optimization call and
    the stage animation. The driver waits for the whole animation and then
    for the remote result; a remote failure ends the run straight away.
    """

    def __init__(
        self,
        *,
        backend: SchedulingBackend,
        hub: RunStateHub | None = None,
        animator_factory: AnimatorFactory | None = None,
        optimization_timeout_seconds: float | None = None,
    ) -> None:
        self._backend = backend
        self.hub = hub or RunStateHub()
        self._animator_factory = animator_factory or (lambda _config: StageAnimator())
        self._timeout = optimization_timeout_seconds
        self._state = RunState()
        self._proposal: AllocationProposal | None = None
        self._driver: asyncio.Task[RunState] | None = None
        self._listeners: list[ProposalListener] = []
        self._publish_lock = asyncio.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def proposal(self) -> AllocationProposal | None:
        return self._proposal

    @property
    def is_running(self) -> bool:
        return self._state.status is RunStatus.running

    def add_proposal_listener(self, listener: ProposalListener) -> None:
        self._listeners.append(listener)

    def start(self, config: RunConfig | None) -> asyncio.Task[RunState]:
        if config is None:
            raise InvalidConfig("A run configuration is required")
        if not config.semester_name:
            raise InvalidConfig("A target semester is required", details={"field": "semester_name"})
        # A cancelled driver still tearing down its tasks keeps the slot taken.
        if self.is_running or (self._driver is not None and not self._driver.done()):
            raise RunAlreadyActive(self._state.run_id or "")

        run_id = uuid.uuid4().hex
        self._state = RunState(
            run_id=run_id,
            status=RunStatus.running,
            generations=config.generations,
            started_at=_utcnow(),
        )
        logger.info(
            "Allocation run %s started for semester %s (population=%s, generations=%s)",
            run_id,
            config.semester_name,
            config.population_size,
            config.generations,
        )
        self._driver = asyncio.get_running_loop().create_task(
            self._drive(run_id, config),
            name=f"allocation-run-{run_id}",
        )
        return self._driver

    async def wait(self) -> RunState:
        driver = self._driver
        if driver is not None and not driver.done():
            await asyncio.wait({driver})
        return self._state

    async def cancel(self) -> RunState:
        driver = self._driver
        if not self.is_running or driver is None:
            return self._state
        run_id = self._state.run_id
        idle = RunState(run_id=run_id)
        self._state = idle
        driver.cancel()
        await asyncio.wait({driver})
        logger.info("Allocation run %s cancelled", run_id)
        await self._emit(idle)
        return idle

    async def _drive(self, run_id: str, config: RunConfig) -> RunState:
        await self._emit(self._state)
        remote = asyncio.create_task(self._execute(config))
        animation = asyncio.create_task(self._animate(run_id, config))
        try:
            pending = {remote, animation}
            while not animation.done():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if remote in done and remote.exception() is not None:
                    break

            if remote.done() and remote.exception() is not None:
                animation.cancel()
                error = remote.exception()
                message = error.message if isinstance(error, AppError) else (str(error) or type(error).__name__)
                if not isinstance(error, AppError):
                    logger.error("Optimization call for run %s raised unexpectedly", run_id, exc_info=error)
                return await self._fail(run_id, message)

            if animation.exception() is not None:
                # Only the optimizer result decides the outcome.
                logger.error("Progress animation for run %s crashed", run_id, exc_info=animation.exception())

            # The animation has finished; a slow optimizer keeps the run at 100% here.
            try:
                proposal = await remote
            except AppError as exc:
                return await self._fail(run_id, exc.message)
            except Exception as exc:
                logger.error("Optimization call for run %s raised unexpectedly", run_id, exc_info=exc)
                return await self._fail(run_id, str(exc) or type(exc).__name__)
            return await self._succeed(run_id, config, proposal)
        finally:
            for task in (remote, animation):
                if not task.done():
                    task.cancel()
            await asyncio.gather(remote, animation, return_exceptions=True)

    async def _execute(self, config: RunConfig) -> AllocationProposal:
        call = self._backend.execute_optimization(config)
        if self._timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, self._timeout)
        except asyncio.TimeoutError as exc:
            raise RemoteError("timeout", details={"timeout_seconds": self._timeout}) from exc

    async def _animate(self, run_id: str, config: RunConfig) -> None:
        animator = self._animator_factory(config)
        async with aclosing(animator.run()) as events:
            async for event in events:
                await self._apply_progress(run_id, event, config)

    def _owns(self, run_id: str) -> bool:
        return self._state.run_id == run_id and self._state.status is RunStatus.running

    async def _apply_progress(self, run_id: str, event: StageEvent, config: RunConfig) -> None:
        if not self._owns(run_id):
            return
        overall = max(self._state.overall_progress_pct, event.overall_progress_pct)
        self._state = self._state.model_copy(
            update={
                "overall_progress_pct": overall,
                "stage_label": event.stage_label,
                "stage_progress_pct": event.stage_progress_pct,
                "estimated_generation": estimate_generation(overall, config.generations),
            }
        )
        await self._emit(self._state)

    async def _succeed(self, run_id: str, config: RunConfig, proposal: AllocationProposal) -> RunState:
        if not self._owns(run_id):
            return self._state
        self._proposal = proposal
        self._state = self._state.model_copy(
            update={
                "status": RunStatus.succeeded,
                "overall_progress_pct": 100.0,
                "stage_progress_pct": 100.0,
                "estimated_generation": config.generations,
                "finished_at": _utcnow(),
            }
        )
        logger.info(
            "Allocation run %s succeeded with %d proposed assignment(s)",
            run_id,
            len(proposal.assignments),
        )
        for listener in self._listeners:
            try:
                listener(proposal)
            except Exception:
                logger.exception("Proposal listener failed for run %s", run_id)
        await self._emit(self._state)
        return self._state

    async def _fail(self, run_id: str, message: str) -> RunState:
        if not self._owns(run_id):
            return self._state
        self._state = RunState(
            run_id=run_id,
            status=RunStatus.failed,
            generations=self._state.generations,
            error=message,
            started_at=self._state.started_at,
            finished_at=_utcnow(),
        )
        logger.warning("Allocation run %s failed: %s", run_id, message)
        await self._emit(self._state)
        return self._state

    async def _emit(self, state: RunState) -> None:
        async with self._publish_lock:
            await self.hub.publish(state)
