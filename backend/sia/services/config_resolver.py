from __future__ import annotations

from dataclasses import dataclass
import logging

from pydantic import ValidationError

from sia.core.exceptions import AppError, ConfigUnavailable, InvalidConfig
from sia.schemas.allocation import RunConfig, Semester
from sia.services.scheduling_client import SchedulingBackend

logger = logging.getLogger(__name__)

# Used when the scheduling API cannot report its own defaults.
FALLBACK_RUN_CONFIG = RunConfig(
    population_size=100,
    generations=50,
    crossover_probability=0.8,
    mutation_probability=0.1,
    elite_size=5,
    tournament_size=3,
)


@dataclass(frozen=True)
class ResolvedConfig:
    config: RunConfig
    fallback: bool


class ConfigResolver:
    def __init__(self, *, backend: SchedulingBackend) -> None:
        self._backend = backend

    async def load_defaults(self) -> RunConfig:
        """Fetch the optimizer defaults once; raises ConfigUnavailable on any failure."""
        try:
            return await self._backend.fetch_default_config()
        except ConfigUnavailable:
            raise
        except Exception as exc:
            raise ConfigUnavailable(f"Failed to fetch AG config defaults: {exc}") from exc

    async def resolve_defaults(self) -> ResolvedConfig:
        try:
            config = await self.load_defaults()
        except ConfigUnavailable as exc:
            logger.warning("Using built-in optimizer defaults: %s", exc.message)
            return ResolvedConfig(config=FALLBACK_RUN_CONFIG.model_copy(), fallback=True)
        return ResolvedConfig(config=config, fallback=False)

    async def load_semesters(self) -> list[Semester]:
        try:
            return await self._backend.fetch_semesters()
        except AppError as exc:
            logger.warning("Unable to list semesters: %s", exc.message)
            return []

    @staticmethod
    def apply_changes(config: RunConfig, **changes) -> RunConfig:
        unknown = sorted(set(changes) - set(RunConfig.model_fields))
        if unknown:
            raise InvalidConfig("Unknown configuration field(s)", details={"fields": unknown})
        try:
            return RunConfig.model_validate({**config.model_dump(), **changes})
        except ValidationError as exc:
            raise InvalidConfig(
                "Configuration out of bounds",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc
