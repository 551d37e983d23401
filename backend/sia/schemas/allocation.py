from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunConfig(BaseModel):
    population_size: int = Field(default=100, ge=50, le=200)
    generations: int = Field(default=50, ge=10, le=100)
    crossover_probability: float = Field(default=0.8, ge=0.1, le=1.0)
    mutation_probability: float = Field(default=0.1, ge=0.01, le=0.5)
    elite_size: int = Field(default=5, ge=0, le=50)
    tournament_size: int = Field(default=3, ge=2, le=20)
    seed: int | None = Field(default=None, ge=0, le=2_000_000_000)
    # Left blank while the operator is still editing; required before a run.
    semester_name: str = Field(default="", max_length=100)

    @field_validator("semester_name")
    @classmethod
    def strip_semester(cls, value: str) -> str:
        return value.strip()

    @classmethod
    def bounded(cls, **values) -> "RunConfig":
        """Build a config, pulling out-of-range numbers back inside the field bounds."""
        clamped = {}
        for name, value in values.items():
            field = cls.model_fields.get(name)
            if field is None or value is None:
                continue
            for constraint in field.metadata:
                lower = getattr(constraint, "ge", None)
                upper = getattr(constraint, "le", None)
                if lower is not None and value < lower:
                    value = lower
                if upper is not None and value > upper:
                    value = upper
            clamped[name] = value
        return cls(**clamped)


class RunStatus(str, Enum):
    idle = "idle"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class RunState(BaseModel):
    run_id: str | None = None
    status: RunStatus = RunStatus.idle
    overall_progress_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    stage_label: str | None = None
    stage_progress_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    estimated_generation: int = Field(default=0, ge=0)
    generations: int = Field(default=0, ge=0)
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in {RunStatus.succeeded, RunStatus.failed}


class ProposedAssignment(BaseModel):
    offering_id: int
    instructor_id: int
    position: int = 0
    instructor_name: str = ""
    course_name: str = ""
    class_group: str = ""
    course_hours: float = 0.0
    instructor_max_load: float = 0.0
    instructor_allocated_load: float = 0.0
    course_area: str = ""
    has_competence: bool = False
    instructor_level: int | None = None
    expected_level: int | None = None
    title: str | None = None
    hiring_model: str | None = None
    match: str | None = None

    model_config = ConfigDict(frozen=True)


class QualityPenalties(BaseModel):
    incompetence: float = 0.0
    overload: float = 0.0
    imbalance: float = 0.0

    model_config = ConfigDict(frozen=True)


class ProposalQuality(BaseModel):
    total_fitness: float = 0.0
    penalties: QualityPenalties = Field(default_factory=QualityPenalties)

    model_config = ConfigDict(frozen=True)


class LoadDistribution(BaseModel):
    instructor: str
    allocated_load: float
    max_load: float
    free_load: float
    utilization_pct: float

    model_config = ConfigDict(frozen=True)


class ProposalSummary(BaseModel):
    total_offerings: int = 0
    matched_offerings: int = 0
    unmatched_offerings: int = 0
    compatibility_pct: float = 0.0
    instructors_used: int = 0
    total_instructors: int = 0
    load_distribution: tuple[LoadDistribution, ...] = ()
    total_fitness: float = 0.0

    model_config = ConfigDict(frozen=True)


class ProposalFeasibility(BaseModel):
    feasible: bool = True
    problems: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


class FitnessEvolution(BaseModel):
    generations: tuple[int, ...] = ()
    mean: tuple[float, ...] = ()
    minimum: tuple[float, ...] = ()
    maximum: tuple[float, ...] = ()
    std_dev: tuple[float, ...] = ()

    model_config = ConfigDict(frozen=True)


class AllocationProposal(BaseModel):
    semester: str
    execution_seconds: float = 0.0
    parameters_used: dict[str, float] = Field(default_factory=dict)
    assignments: tuple[ProposedAssignment, ...] = ()
    quality: ProposalQuality = Field(default_factory=ProposalQuality)
    summary: ProposalSummary = Field(default_factory=ProposalSummary)
    feasibility: ProposalFeasibility = Field(default_factory=ProposalFeasibility)
    fitness_evolution: FitnessEvolution = Field(default_factory=FitnessEvolution)

    model_config = ConfigDict(frozen=True)

    @property
    def offering_ids(self) -> list[int]:
        return [assignment.offering_id for assignment in self.assignments]

    def assignment_for(self, offering_id: int) -> ProposedAssignment | None:
        for assignment in self.assignments:
            if assignment.offering_id == offering_id:
                return assignment
        return None


class Semester(BaseModel):
    id: int
    name: str
    year: int | None = None
    period: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class SaveStatus(str, Enum):
    unsaved = "unsaved"
    saving = "saving"
    saved = "saved"


SaveOutcome = Literal["saved", "already_complete", "already_saved", "in_progress"]


class SaveResult(BaseModel):
    outcome: SaveOutcome
    offering_ids: list[int] = Field(default_factory=list)
    message: str


class ResolvedConfigOut(BaseModel):
    config: RunConfig
    fallback: bool = False
    semesters: list[Semester] = Field(default_factory=list)


class ProposalOut(BaseModel):
    proposal: AllocationProposal
    save_state: dict[int, SaveStatus]
    pending: int
