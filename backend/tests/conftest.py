from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from sia.api.deps import get_orchestrator
from sia.core.exceptions import ConfigUnavailable
from sia.main import app
from sia.schemas.allocation import AllocationProposal, ProposedAssignment, RunConfig, Semester
from sia.services.orchestrator import AllocationOrchestrator
from sia.services.stage_animator import Stage, StageAnimator


def build_proposal(count: int = 3, *, semester: str = "2024.1") -> AllocationProposal:
    return AllocationProposal(
        semester=semester,
        execution_seconds=1.5,
        assignments=tuple(
            ProposedAssignment(
                offering_id=100 + index,
                instructor_id=10 + index,
                position=index,
                instructor_name=f"Professor {index}",
                course_name=f"Course {index}",
                class_group="A",
                course_hours=60,
                has_competence=index % 2 == 0,
            )
            for index in range(count)
        ),
    )


class FakeSchedulingBackend:
    """In-memory stand-in for the scheduling API used across the test-suite."""

    def __init__(self, proposal: AllocationProposal | None = None) -> None:
        self.proposal = proposal or build_proposal()
        self.defaults = RunConfig(population_size=120, generations=60, crossover_probability=0.75, mutation_probability=0.05)
        self.semesters = [Semester(id=1, name="2024.1", year=2024, period="1")]
        self.config_error: Exception | None = None
        self.semesters_error: Exception | None = None
        self.optimization_error: Exception | None = None
        self.persist_error: Exception | None = None
        # When set, calls block on these events until the test releases them.
        self.optimization_gate: asyncio.Event | None = None
        self.persist_gate: asyncio.Event | None = None
        self.optimization_calls: list[RunConfig] = []
        self.bulk_calls: list[list[tuple[int, int]]] = []
        self.single_calls: list[tuple[int, int]] = []
        self.optimization_settled = False

    async def fetch_default_config(self) -> RunConfig:
        if self.config_error is not None:
            raise self.config_error
        return self.defaults

    async def fetch_semesters(self) -> list[Semester]:
        if self.semesters_error is not None:
            raise self.semesters_error
        return list(self.semesters)

    async def execute_optimization(self, config: RunConfig) -> AllocationProposal:
        self.optimization_calls.append(config)
        if self.optimization_gate is not None:
            await self.optimization_gate.wait()
        self.optimization_settled = True
        if self.optimization_error is not None:
            raise self.optimization_error
        return self.proposal

    async def persist_assignments(self, items: list[tuple[int, int]]) -> None:
        self.bulk_calls.append(list(items))
        if self.persist_gate is not None:
            await self.persist_gate.wait()
        if self.persist_error is not None:
            raise self.persist_error

    async def persist_assignment(self, offering_id: int, instructor_id: int) -> None:
        self.single_calls.append((offering_id, instructor_id))
        if self.persist_gate is not None:
            await self.persist_gate.wait()
        if self.persist_error is not None:
            raise self.persist_error


async def _next_turn(_seconds: float) -> None:
    await asyncio.sleep(0)


def quick_animator(_config: RunConfig | None = None) -> StageAnimator:
    return StageAnimator(
        stages=[Stage("Preparing", 1.0), Stage("Evolving", 2.0), Stage("Finishing", 1.0)],
        ticks_per_stage=4,
        sleep=_next_turn,
    )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def backend() -> FakeSchedulingBackend:
    return FakeSchedulingBackend()


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(
        population_size=100,
        generations=50,
        crossover_probability=0.7,
        mutation_probability=0.2,
        semester_name="2024.1",
    )


@pytest.fixture
def orchestrator(backend) -> AllocationOrchestrator:
    return AllocationOrchestrator.build(backend=backend, animator_factory=quick_animator)


@pytest.fixture()
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def unavailable_config(backend) -> FakeSchedulingBackend:
    backend.config_error = ConfigUnavailable("Failed to fetch AG config defaults: Service Unavailable")
    return backend


@pytest.fixture
def make_proposal():
    return build_proposal


@pytest.fixture
def animator_factory():
    return quick_animator
