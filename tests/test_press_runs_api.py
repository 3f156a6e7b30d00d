"""Press run endpoint tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.api
@pytest.mark.asyncio
class TestCompletePressRun:
    """POST /api/press-runs/{id}/complete"""

    async def _seed(self, seed):
        return await seed(
            total_juice_l=1000,
            lines=[
                {"variety": "Gravenstein", "weight_kg": 700},
                {"variety": "Northern Spy", "weight_kg": 300},
            ],
            vessels=[("TK03", 800), ("FV01", 500)],
        )

    async def test_creates_batches(self, client: AsyncClient, seed):
        run = await self._seed(seed)
        resp = await client.post(f"/api/press-runs/{run.press_run_id}/complete", json={
            "assignments": [
                {"to_vessel_id": run.vessel_ids[0], "volume_l": 700},
                {"to_vessel_id": run.vessel_ids[1], "volume_l": 300},
            ],
        })
        assert resp.status_code == 201
        data = resp.json()
        assert data["press_run_id"] == run.press_run_id
        assert len(data["created_batch_ids"]) == 2

        resp = await client.get(f"/api/press-runs/{run.press_run_id}/batches")
        assert resp.status_code == 200
        batches = {b["id"]: b for b in resp.json()}
        assert set(batches) == set(data["created_batch_ids"])

        first = batches[data["created_batch_ids"][0]]
        assert first["initial_volume_l"] == 700
        assert first["status"] == "active"
        assert len(first["compositions"]) == 2
        assert sum(c["juice_volume_l"] for c in first["compositions"]) == pytest.approx(700)

    async def test_press_run_not_found(self, client: AsyncClient, seed):
        await self._seed(seed)
        resp = await client.post("/api/press-runs/nope/complete", json={
            "assignments": [{"to_vessel_id": "v", "volume_l": 10}],
        })
        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "RESOURCE_NOT_FOUND"
        assert error["details"]["id"] == "nope"

    async def test_capacity_violation(self, client: AsyncClient, seed):
        run = await self._seed(seed)
        resp = await client.post(f"/api/press-runs/{run.press_run_id}/complete", json={
            "assignments": [{"to_vessel_id": run.vessel_ids[1], "volume_l": 650}],
        })
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "ALLOCATION_VALIDATION_ERROR"
        assert error["details"]["capacity_l"] == 500
        assert error["details"]["requested_l"] == 650

        resp = await client.get(f"/api/press-runs/{run.press_run_id}/batches")
        assert resp.json() == []

    async def test_second_completion_conflicts(self, client: AsyncClient, seed):
        run = await self._seed(seed)
        body = {"assignments": [{"to_vessel_id": run.vessel_ids[0], "volume_l": 500}]}

        first = await client.post(f"/api/press-runs/{run.press_run_id}/complete", json=body)
        assert first.status_code == 201

        second = await client.post(f"/api/press-runs/{run.press_run_id}/complete", json=body)
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "PRESS_RUN_ALREADY_PROCESSED"

        resp = await client.get(f"/api/press-runs/{run.press_run_id}/batches")
        assert len(resp.json()) == 1

    async def test_sugar_without_readings_is_invariant_error(self, client: AsyncClient, seed):
        run = await self._seed(seed)
        resp = await client.post(f"/api/press-runs/{run.press_run_id}/complete", json={
            "assignments": [{"to_vessel_id": run.vessel_ids[0], "volume_l": 500}],
            "allocation_mode": "sugar",
        })
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "ALLOCATION_INVARIANT_VIOLATED"
        assert "details" not in error

    @pytest.mark.parametrize("body", [
        {"assignments": []},
        {"assignments": [{"to_vessel_id": "v", "volume_l": 0}]},
        {"assignments": [{"to_vessel_id": "v", "volume_l": 10}], "allocation_mode": "volume"},
        {},
    ])
    async def test_malformed_request(self, client: AsyncClient, body):
        resp = await client.post("/api/press-runs/any/complete", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.api
@pytest.mark.asyncio
class TestListPressRunBatches:

    async def test_unknown_press_run(self, client: AsyncClient):
        resp = await client.get("/api/press-runs/missing/batches")
        assert resp.status_code == 404


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
