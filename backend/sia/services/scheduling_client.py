from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from sia.core.exceptions import ConfigUnavailable, PersistError, RemoteError
from sia.schemas.allocation import (
    AllocationProposal,
    FitnessEvolution,
    LoadDistribution,
    ProposalFeasibility,
    ProposalQuality,
    ProposalSummary,
    ProposedAssignment,
    QualityPenalties,
    RunConfig,
    Semester,
)

logger = logging.getLogger(__name__)


class SchedulingBackend(Protocol):
    """What the orchestrator needs from the scheduling API."""

    async def fetch_default_config(self) -> RunConfig: ...

    async def fetch_semesters(self) -> list[Semester]: ...

    async def execute_optimization(self, config: RunConfig) -> AllocationProposal: ...

    async def persist_assignments(self, items: list[tuple[int, int]]) -> None: ...

    async def persist_assignment(self, offering_id: int, instructor_id: int) -> None: ...


def _error_message(response: httpx.Response, action: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("detail")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return f"Failed to {action}: {response.reason_phrase or response.status_code}"


def _data(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def config_from_payload(data: dict) -> RunConfig:
    values = {
        "population_size": data.get("tamanho_populacao"),
        "generations": data.get("num_geracoes"),
        "crossover_probability": data.get("probabilidade_crossover"),
        "mutation_probability": data.get("probabilidade_mutacao"),
        "elite_size": data.get("elite_size"),
        "tournament_size": data.get("torneio_size"),
        "seed": data.get("seed"),
    }
    return RunConfig.bounded(**values)


def config_to_payload(config: RunConfig) -> dict:
    return {
        "semestre_nome": config.semester_name,
        "tamanho_populacao": config.population_size,
        "num_geracoes": config.generations,
        "probabilidade_crossover": config.crossover_probability,
        "probabilidade_mutacao": config.mutation_probability,
    }


def semester_from_payload(data: dict) -> Semester:
    return Semester(
        id=data["id"],
        name=data["nome"],
        year=data.get("ano"),
        period=data.get("periodo"),
        start_date=data.get("data_inicio") or None,
        end_date=data.get("data_fim") or None,
    )


def _assignment_from_payload(index: int, item: dict) -> ProposedAssignment:
    return ProposedAssignment(
        offering_id=item["oferta_id"],
        instructor_id=item["professor_id"],
        position=item.get("idx", index),
        instructor_name=item.get("professor_nome", ""),
        course_name=item.get("disciplina_nome", ""),
        class_group=item.get("turma", ""),
        course_hours=item.get("carga_horaria", 0.0),
        instructor_max_load=item.get("carga_maxima", 0.0),
        instructor_allocated_load=item.get("carga_alocada", 0.0),
        course_area=item.get("area_disciplina", ""),
        has_competence=bool(item.get("tem_competencia", False)),
        instructor_level=item.get("nivel_professor"),
        expected_level=item.get("nivel_esperado"),
        title=item.get("titulacao"),
        hiring_model=item.get("modelo_contratacao"),
        match=item.get("match"),
    )


def proposal_from_payload(data: dict) -> AllocationProposal:
    allocation = data.get("proposta_alocacao") or {}
    quality = data.get("qualidade") or {}
    penalties = quality.get("penalidades") or {}
    summary = data.get("resumo") or {}
    feasibility = data.get("viabilidade") or {}
    evolution = data.get("evolucao_fitness") or {}

    return AllocationProposal(
        semester=data.get("semestre", ""),
        execution_seconds=data.get("tempo_execucao_segundos", 0.0),
        parameters_used=data.get("parametros_utilizados") or {},
        assignments=tuple(
            _assignment_from_payload(index, item) for index, item in enumerate(allocation.get("alocacoes") or [])
        ),
        quality=ProposalQuality(
            total_fitness=quality.get("fitness_total", 0.0),
            penalties=QualityPenalties(
                incompetence=penalties.get("incompetencia", 0.0),
                overload=penalties.get("sobrecarga", 0.0),
                imbalance=penalties.get("desbalanceamento", 0.0),
            ),
        ),
        summary=ProposalSummary(
            total_offerings=summary.get("ofertas_totais", 0),
            matched_offerings=summary.get("ofertas_com_match", 0),
            unmatched_offerings=summary.get("ofertas_sem_match", 0),
            compatibility_pct=summary.get("percentual_compatibilidade", 0.0),
            instructors_used=summary.get("professores_utilizados", 0),
            total_instructors=summary.get("total_professores", 0),
            load_distribution=tuple(
                LoadDistribution(
                    instructor=row["professor"],
                    allocated_load=row.get("carga_alocada", 0.0),
                    max_load=row.get("carga_maxima", 0.0),
                    free_load=row.get("carga_livre", 0.0),
                    utilization_pct=row.get("percentual_utilizado", 0.0),
                )
                for row in summary.get("distribuicao_carga") or []
            ),
            total_fitness=summary.get("fitness_total", 0.0),
        ),
        feasibility=ProposalFeasibility(
            feasible=bool(feasibility.get("viavel", True)),
            problems=tuple(feasibility.get("problemas") or []),
        ),
        fitness_evolution=FitnessEvolution(
            generations=tuple(evolution.get("geracoes") or []),
            mean=tuple(evolution.get("media") or []),
            minimum=tuple(evolution.get("minimo") or []),
            maximum=tuple(evolution.get("maximo") or []),
            std_dev=tuple(evolution.get("desvio") or []),
        ),
    )


class SchedulingApiClient:
    """Async client for the scheduling REST API.

    Every call is a single attempt; failures are translated into the
    orchestrator's error types and never retried here.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_default_config(self) -> RunConfig:
        try:
            response = await self._client.get("/api/ag/config/defaults")
        except httpx.HTTPError as exc:
            raise ConfigUnavailable(f"Failed to fetch AG config defaults: {exc}") from exc
        if response.is_error:
            raise ConfigUnavailable(_error_message(response, "fetch AG config defaults"))
        try:
            data = _data(response.json())
            return config_from_payload(data)
        except (ValueError, TypeError, AttributeError) as exc:
            raise ConfigUnavailable("Malformed AG config defaults payload") from exc

    async def fetch_semesters(self, *, page: int = 1, per_page: int = 100) -> list[Semester]:
        try:
            response = await self._client.get("/api/semestres", params={"page": page, "per_page": per_page})
        except httpx.HTTPError as exc:
            raise RemoteError(f"Failed to fetch semestres: {exc}") from exc
        if response.is_error:
            raise RemoteError(_error_message(response, "fetch semestres"))
        try:
            return [semester_from_payload(item) for item in _data(response.json()) or []]
        except (ValueError, TypeError, KeyError, AttributeError, ValidationError) as exc:
            raise RemoteError("Malformed semestres payload") from exc

    async def execute_optimization(self, config: RunConfig) -> AllocationProposal:
        logger.info(
            "Requesting optimization for semester %s (population=%s, generations=%s)",
            config.semester_name,
            config.population_size,
            config.generations,
        )
        # The optimizer can run for minutes; the run controller owns that budget.
        try:
            response = await self._client.post(
                "/api/ag/executar",
                json=config_to_payload(config),
                timeout=None,
            )
        except httpx.HTTPError as exc:
            raise RemoteError(f"Failed to execute AG: {exc}") from exc
        if response.is_error:
            raise RemoteError(_error_message(response, "execute AG"), details={"status_code": response.status_code})
        try:
            return proposal_from_payload(_data(response.json()))
        except (ValueError, TypeError, KeyError, AttributeError, ValidationError) as exc:
            raise RemoteError("Malformed optimization result") from exc

    async def persist_assignments(self, items: list[tuple[int, int]]) -> None:
        payload = {
            "alocacoes": [
                {"oferta_id": offering_id, "professor_id": instructor_id} for offering_id, instructor_id in items
            ]
        }
        await self._persist("/api/alocacoes/bulk", payload, "create bulk alocacoes")

    async def persist_assignment(self, offering_id: int, instructor_id: int) -> None:
        payload = {"oferta_id": offering_id, "professor_id": instructor_id}
        await self._persist("/api/alocacoes", payload, "create alocacao")

    async def _persist(self, path: str, payload: dict, action: str) -> None:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise PersistError(f"Failed to {action}: {exc}") from exc
        if response.is_error:
            raise PersistError(_error_message(response, action), details={"status_code": response.status_code})
