"""
Tests de los endpoints del orquestador (/api/v1/sync).
"""
import pytest

from practice_sync.application.use_cases.sync_use_cases import aggregate_status, parse_entity_types
from practice_sync.domain.entities.sync_job import SyncJob
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.shared.constants.sync_constants import ConnectionStatus, EntityType, JobStatus
from practice_sync.shared.exceptions.domain import UnsupportedEntityType


USER = {"X-User-Id": "user-1"}


class TestTriggerSync:
    """POST /api/v1/sync"""

    @pytest.mark.asyncio
    async def test_full_sync_of_selected_entities(self, client, connection):
        response = await client.post(
            "/api/v1/sync",
            json={"entities": ["matters", "contacts"], "fullSync": True},
            headers=USER,
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["full_sync"] is True
        assert data["connection_id"] == connection.id
        assert [job["entity_type"] for job in data["jobs"]] == ["matters", "contacts"]
        assert {job["mode"] for job in data["jobs"]} == {"full"}
        assert {job["status"] for job in data["jobs"]} == {"PENDING"}

    @pytest.mark.asyncio
    async def test_empty_request_syncs_everything_incrementally(self, client, connection):
        response = await client.post("/api/v1/sync", json={}, headers=USER)

        assert response.status_code == 202
        data = response.json()
        assert data["full_sync"] is False
        assert len(data["jobs"]) == 5
        assert {job["mode"] for job in data["jobs"]} == {"incremental"}

    @pytest.mark.asyncio
    async def test_unknown_entity_type(self, client, engine, connection):
        response = await client.post("/api/v1/sync", json={"entities": ["invoices"]}, headers=USER)

        assert response.status_code == 400
        assert response.json()["error"] == "UNSUPPORTED_ENTITY_TYPE"
        assert await engine.queue.dequeue("w1", timeout=0) is None

    @pytest.mark.asyncio
    async def test_user_without_connection(self, client):
        response = await client.post("/api/v1/sync", json={}, headers={"X-User-Id": "nadie"})

        assert response.status_code == 404
        assert response.json()["error"] == "CONNECTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_degraded_connection_needs_reauthorization(self, client, engine, connection):
        async with engine.session_factory() as session:
            await ConnectionRepositoryImpl(session).set_status(connection.id, ConnectionStatus.DEGRADED)
            await session.commit()

        response = await client.post("/api/v1/sync", json={}, headers=USER)

        assert response.status_code == 409
        assert response.json()["error"] == "REAUTHORIZATION_REQUIRED"

    @pytest.mark.asyncio
    async def test_missing_user_header(self, client, connection):
        response = await client.post("/api/v1/sync", json={})

        assert response.status_code == 422


class TestBatchStatus:
    """GET /api/v1/sync/{batch_id}, /jobs/{job_id} y cancelacion."""

    @pytest.mark.asyncio
    async def test_batch_progress(self, client, connection):
        created = (await client.post("/api/v1/sync", json={"entities": ["users"]}, headers=USER)).json()

        response = await client.get(f"/api/v1/sync/{created['batch_id']}")

        assert response.status_code == 200
        assert response.json()["batch_id"] == created["batch_id"]
        assert response.json()["jobs"][0]["pages_completed"] == 0

    @pytest.mark.asyncio
    async def test_unknown_batch(self, client):
        response = await client.get("/api/v1/sync/no-existe")

        assert response.status_code == 404
        assert response.json()["error"] == "ENTITY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_job_status(self, client, connection):
        created = (await client.post("/api/v1/sync", json={"entities": ["tasks"]}, headers=USER)).json()
        job_id = created["jobs"][0]["job_id"]

        response = await client.get(f"/api/v1/sync/jobs/{job_id}")

        assert response.status_code == 200
        assert response.json()["entity_type"] == "tasks"
        assert (await client.get("/api/v1/sync/jobs/99999")).status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_batch(self, client, connection):
        created = (await client.post("/api/v1/sync", json={}, headers=USER)).json()

        response = await client.post(f"/api/v1/sync/{created['batch_id']}/cancel")

        assert response.status_code == 202
        assert response.json()["cancelled_jobs"] == 5
        batch = (await client.get(f"/api/v1/sync/{created['batch_id']}")).json()
        assert batch["status"] == "FAILED"
        assert {job["error_code"] for job in batch["jobs"]} == {"CANCELLED"}

        again = await client.post(f"/api/v1/sync/{created['batch_id']}/cancel")
        assert again.json()["cancelled_jobs"] == 0


class TestHelpers:
    """Validacion de tipos y estado agregado."""

    def test_parse_entity_types(self):
        assert parse_entity_types([]) == list(EntityType)
        assert parse_entity_types([" Matters", "contacts", "matters"]) == [EntityType.MATTER, EntityType.CONTACT]
        with pytest.raises(UnsupportedEntityType):
            parse_entity_types(["invoices"])

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ([JobStatus.COMPLETED, JobStatus.COMPLETED], JobStatus.COMPLETED),
            ([JobStatus.PENDING, JobStatus.PENDING], JobStatus.PENDING),
            ([JobStatus.COMPLETED, JobStatus.FAILED], JobStatus.FAILED),
            ([JobStatus.COMPLETED, JobStatus.PENDING], JobStatus.IN_PROGRESS),
            ([JobStatus.IN_PROGRESS, JobStatus.PENDING], JobStatus.IN_PROGRESS),
        ],
    )
    def test_aggregate_status(self, statuses, expected):
        jobs = [SyncJob(id=i, connection_id=1, status=status) for i, status in enumerate(statuses)]

        assert aggregate_status(jobs) == expected
