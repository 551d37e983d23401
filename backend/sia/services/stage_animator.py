from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    label: str
    # Nominal duration in seconds; also the stage's share of overall progress.
    weight_seconds: float


@dataclass(frozen=True)
class StageEvent:
    overall_progress_pct: float
    stage_label: str
    stage_progress_pct: float


DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage("Loading offerings and instructors", 1.0),
    Stage("Building initial population", 1.5),
    Stage("Evaluating fitness", 3.0),
    Stage("Selection and crossover", 2.5),
    Stage("Applying mutation", 1.5),
    Stage("Consolidating best allocation", 1.0),
)


class StageAnimator:
    """Time-driven pseudo-progress for an optimizer call that reports nothing.

    Each stage advances in ``ticks_per_stage`` equal steps. The sequence only
    depends on the clock, never on the remote call, and always ends at 100%.
    """

    def __init__(
        self,
        stages: Sequence[Stage] = DEFAULT_STAGES,
        *,
        ticks_per_stage: int = 20,
        time_scale: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if not stages:
            raise ValueError("StageAnimator requires at least one stage")
        if ticks_per_stage < 1:
            raise ValueError("ticks_per_stage must be at least 1")
        if any(stage.weight_seconds < 0 for stage in stages):
            raise ValueError("stage weights cannot be negative")
        self.stages = tuple(stages)
        self.ticks_per_stage = ticks_per_stage
        self.time_scale = max(time_scale, 0.0)
        self._sleep = sleep
        self._started = False

    @property
    def total_weight(self) -> float:
        return sum(stage.weight_seconds for stage in self.stages)

    @property
    def nominal_duration_seconds(self) -> float:
        return self.total_weight * self.time_scale

    def run(self) -> AsyncIterator[StageEvent]:
        if self._started:
            raise RuntimeError("StageAnimator sequences cannot be restarted")
        self._started = True
        return self._events()

    def _overall(self, completed_weight: float, stage: Stage, fraction: float, index: int) -> float:
        total = self.total_weight
        if total <= 0:
            # All-zero weights: split progress evenly between stages.
            return (index + fraction) / len(self.stages) * 100.0
        return (completed_weight + stage.weight_seconds * fraction) / total * 100.0

    async def _events(self) -> AsyncIterator[StageEvent]:
        completed_weight = 0.0
        last_index = len(self.stages) - 1
        for index, stage in enumerate(self.stages):
            tick_seconds = stage.weight_seconds * self.time_scale / self.ticks_per_stage
            for tick in range(1, self.ticks_per_stage + 1):
                await self._sleep(tick_seconds)
                fraction = tick / self.ticks_per_stage
                if index == last_index and tick == self.ticks_per_stage:
                    overall = 100.0
                else:
                    overall = min(self._overall(completed_weight, stage, fraction, index), 100.0)
                yield StageEvent(
                    overall_progress_pct=round(overall, 2),
                    stage_label=stage.label,
                    stage_progress_pct=round(fraction * 100.0, 2),
                )
            completed_weight += stage.weight_seconds
