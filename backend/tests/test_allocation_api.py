from __future__ import annotations

import asyncio
import time

from sia.core.exceptions import PersistError, RemoteError

RUN_PAYLOAD = {
    "population_size": 100,
    "generations": 50,
    "crossover_probability": 0.7,
    "mutation_probability": 0.2,
    "semester_name": "2024.1",
}


def _wait_for_status(client, *statuses: str, timeout: float = 3.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        state = client.get("/api/allocation/runs/current").json()
        if state["status"] in statuses:
            return state
        time.sleep(0.01)
    raise AssertionError(f"run never reached {statuses}")


def test_default_config_uses_backend_and_first_semester(client):
    response = client.get("/api/allocation/config/defaults")

    assert response.status_code == 200
    payload = response.json()
    assert payload["fallback"] is False
    assert payload["config"]["population_size"] == 120
    assert payload["config"]["semester_name"] == "2024.1"
    assert payload["semesters"][0]["name"] == "2024.1"


def test_default_config_falls_back_when_backend_unavailable(client, unavailable_config):
    response = client.get("/api/allocation/config/defaults")

    assert response.status_code == 200
    payload = response.json()
    assert payload["fallback"] is True
    assert payload["config"]["population_size"] == 100
    assert payload["config"]["generations"] == 50


def test_default_config_survives_malformed_semesters(client, backend):
    backend.semesters_error = RemoteError("Malformed semestres payload")

    response = client.get("/api/allocation/config/defaults")

    assert response.status_code == 200
    payload = response.json()
    assert payload["semesters"] == []
    assert payload["config"]["semester_name"] == ""


def test_start_run_requires_semester(client):
    response = client.post("/api/allocation/runs", json={**RUN_PAYLOAD, "semester_name": "  "})

    assert response.status_code == 400
    assert response.json()["message"] == "A target semester is required"


def test_start_run_rejects_out_of_bounds_config(client):
    response = client.post("/api/allocation/runs", json={**RUN_PAYLOAD, "population_size": 5000})

    assert response.status_code == 422


def test_run_then_save_flow(client, backend):
    started = client.post("/api/allocation/runs", json=RUN_PAYLOAD)
    assert started.status_code == 202
    assert started.json()["status"] == "running"

    final = _wait_for_status(client, "succeeded", "failed")
    assert final["status"] == "succeeded"
    assert final["overall_progress_pct"] == 100.0

    proposal = client.get("/api/allocation/proposal").json()
    assert [item["offering_id"] for item in proposal["proposal"]["assignments"]] == [100, 101, 102]
    assert proposal["pending"] == 3
    assert set(proposal["save_state"].values()) == {"unsaved"}

    single = client.post("/api/allocation/proposal/assignments/101/save")
    assert single.json()["outcome"] == "saved"

    bulk = client.post("/api/allocation/proposal/save")
    assert bulk.status_code == 200
    assert bulk.json()["offering_ids"] == [100, 102]
    assert backend.bulk_calls == [[(100, 10), (102, 12)]]

    again = client.post("/api/allocation/proposal/save")
    assert again.json()["outcome"] == "already_complete"
    assert len(backend.bulk_calls) == 1

    repeated = client.post("/api/allocation/proposal/assignments/101/save")
    assert repeated.json()["outcome"] == "already_saved"


def test_second_run_conflicts_until_cancelled(client, backend):
    backend.optimization_gate = asyncio.Event()
    assert client.post("/api/allocation/runs", json=RUN_PAYLOAD).status_code == 202

    conflict = client.post("/api/allocation/runs", json=RUN_PAYLOAD)
    assert conflict.status_code == 409
    assert "run_id" in conflict.json()["details"]

    cancelled = client.delete("/api/allocation/runs/current")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "idle"


def test_failed_run_reports_remote_error(client, backend):
    backend.optimization_error = RemoteError("Semestre 2024.1 sem ofertas")
    client.post("/api/allocation/runs", json=RUN_PAYLOAD)

    final = _wait_for_status(client, "succeeded", "failed")

    assert final["status"] == "failed"
    assert final["error"] == "Semestre 2024.1 sem ofertas"
    assert final["overall_progress_pct"] == 0.0
    assert client.get("/api/allocation/proposal").status_code == 404


def test_save_failures_surface_as_bad_gateway(client, backend):
    client.post("/api/allocation/runs", json=RUN_PAYLOAD)
    _wait_for_status(client, "succeeded")
    backend.persist_error = PersistError("Failed to create bulk alocacoes: Bad Gateway")

    response = client.post("/api/allocation/proposal/save")

    assert response.status_code == 502
    assert response.json()["message"] == "Failed to create bulk alocacoes: Bad Gateway"
    proposal = client.get("/api/allocation/proposal").json()
    assert set(proposal["save_state"].values()) == {"unsaved"}


def test_save_without_proposal_conflicts(client):
    response = client.post("/api/allocation/proposal/save")

    assert response.status_code == 409
    assert response.json()["message"] == "No allocation proposal is available"


def test_save_unknown_offering_is_not_found(client):
    client.post("/api/allocation/runs", json=RUN_PAYLOAD)
    _wait_for_status(client, "succeeded")

    response = client.post("/api/allocation/proposal/assignments/999/save")

    assert response.status_code == 404


def test_run_state_stream_sends_current_state(client):
    with client.websocket_connect("/api/allocation/runs/stream") as websocket:
        message = websocket.receive_json()

    assert message["event"] == "run.state"
    assert message["state"]["status"] == "idle"
