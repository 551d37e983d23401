from __future__ import annotations

from dataclasses import dataclass

from sia.core.config import Settings
from sia.schemas.allocation import RunConfig
from sia.services.config_resolver import ConfigResolver
from sia.services.run_controller import AnimatorFactory, RunController
from sia.services.run_state_hub import RunStateHub
from sia.services.save_reconciler import SaveStateReconciler
from sia.services.scheduling_client import SchedulingApiClient, SchedulingBackend
from sia.services.stage_animator import StageAnimator


@dataclass
class AllocationOrchestrator:
    backend: SchedulingBackend
    resolver: ConfigResolver
    controller: RunController
    reconciler: SaveStateReconciler

    @classmethod
    def build(
        cls,
        *,
        backend: SchedulingBackend,
        animator_factory: AnimatorFactory | None = None,
        optimization_timeout_seconds: float | None = None,
    ) -> "AllocationOrchestrator":
        controller = RunController(
            backend=backend,
            hub=RunStateHub(),
            animator_factory=animator_factory,
            optimization_timeout_seconds=optimization_timeout_seconds,
        )
        reconciler = SaveStateReconciler(backend=backend)
        controller.add_proposal_listener(reconciler.load)
        return cls(
            backend=backend,
            resolver=ConfigResolver(backend=backend),
            controller=controller,
            reconciler=reconciler,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AllocationOrchestrator":
        backend = SchedulingApiClient(
            base_url=settings.scheduling_api_base_url,
            timeout_seconds=settings.scheduling_api_timeout_seconds,
        )

        def animator_factory(_config: RunConfig) -> StageAnimator:
            return StageAnimator(
                ticks_per_stage=settings.animation_ticks_per_stage,
                time_scale=settings.animation_time_scale,
            )

        return cls.build(
            backend=backend,
            animator_factory=animator_factory,
            optimization_timeout_seconds=settings.optimization_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self.controller.cancel()
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()
