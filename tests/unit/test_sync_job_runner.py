"""
Tests del runner de jobs: paginacion con checkpoint, reintentos,
marca de agua, cancelacion y modos de webhook.
"""
import httpx
import pytest
from sqlalchemy.exc import OperationalError

from practice_sync.application.services.sync_job_runner import classify, error_chain
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.infrastructure.repositories.entity_repository_impl import EntityRepositoryImpl
from practice_sync.shared.constants.sync_constants import ConnectionStatus, EntityType, JobStatus, SyncMode
from practice_sync.shared.exceptions.sync import MalformedPayload, TransientRemoteError
from practice_sync.shared.utils.datetime_utils import to_iso_z
from tests.support import clio_page, matter_payload


MATTERS = "/api/v4/matters.json"


async def run_next(engine, worker_id: str = "w1"):
    """Reclama el siguiente job y lo ejecuta como lo haria un worker."""
    job = await engine.queue.dequeue(worker_id, timeout=0)
    assert job is not None
    try:
        await engine.runner.run(job)
    finally:
        engine.queue.release_key(job)
    return await engine.queue.get(job.id)


def paged_matters(fail_page_two: int = 0):
    """Tres paginas (2 + 2 + 1 registros); la pagina 2 puede fallar N veces con 503."""
    failures = {"p2": 0}
    pages = {
        None: ([matter_payload(1), matter_payload(2)], "p2"),
        "p2": ([matter_payload(3), matter_payload(4)], "p3"),
        "p3": ([matter_payload(5)], None),
    }

    def respond(request):
        token = request.url.params.get("page_token")
        if token == "p2" and failures["p2"] < fail_page_two:
            failures["p2"] += 1
            return httpx.Response(503)
        records, next_token = pages[token]
        return clio_page(records, next_token=next_token)

    return respond


async def _count_matters(engine, connection_id, include_deleted=False):
    async with engine.session_factory() as session:
        return await EntityRepositoryImpl(session).count(EntityType.MATTER, connection_id, include_deleted)


async def _watermark(engine, connection_id):
    async with engine.session_factory() as session:
        return await ConnectionRepositoryImpl(session).get_watermark(connection_id, EntityType.MATTER)


class TestPagedSync:
    """Jobs full / incremental."""

    @pytest.mark.asyncio
    async def test_full_sync_walks_all_pages(self, engine, connection, fake_clio, fake_redis):
        fake_clio.add("GET", MATTERS, paged_matters())
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        job = await run_next(engine)

        assert job.status == JobStatus.COMPLETED
        assert job.pages_completed == 3
        assert job.records_processed == 5
        assert job.cursor is None
        assert await _count_matters(engine, connection.id) == 5
        assert fake_redis.field("event:matters.full") == 1
        assert fake_redis.field("duration_count:matters.full") == 1

    @pytest.mark.asyncio
    async def test_transient_failure_resumes_from_checkpoint(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, paged_matters(fail_page_two=6))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        first = await run_next(engine)

        assert first.status == JobStatus.PENDING
        assert first.cursor == "p2"
        assert first.pages_completed == 1
        assert first.error_code == "TRANSIENT_REMOTE_ERROR"
        assert first.error_chain[0].startswith("TransientRemoteError")
        assert await _watermark(engine, connection.id) is None

        second = await run_next(engine)

        assert second.status == JobStatus.COMPLETED
        assert second.attempts == 2
        assert second.pages_completed == 3
        assert second.records_processed == 5
        first_page_calls = [r for r in fake_clio.calls("GET", MATTERS) if "page_token" not in r.url.params]
        assert len(first_page_calls) == 1
        assert await _count_matters(engine, connection.id) == 5

    @pytest.mark.asyncio
    async def test_watermark_feeds_next_incremental(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, clio_page([matter_payload()]))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        full = await run_next(engine)

        watermark = await _watermark(engine, connection.id)
        assert watermark == full.sync_started_at
        assert "updated_since" not in fake_clio.requests[0].url.params

        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.INCREMENTAL)
        incremental = await run_next(engine)

        assert incremental.status == JobStatus.COMPLETED
        assert incremental.updated_since == watermark
        sent = fake_clio.requests[-1].url.params["updated_since"]
        assert sent == to_iso_z(watermark)

    @pytest.mark.asyncio
    async def test_malformed_record_fails_without_retry(self, engine, connection, fake_clio, fake_redis):
        fake_clio.add("GET", MATTERS, clio_page([matter_payload(1), matter_payload(2, billable="yes")]))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        job = await run_next(engine)

        assert job.status == JobStatus.FAILED
        assert job.attempts == 1
        assert job.error_code == "MALFORMED_PAYLOAD"
        assert "billable" in job.error_message
        # La pagina invalida no se persiste a medias
        assert await _count_matters(engine, connection.id) == 0
        assert fake_redis.field("error:matters.full:MALFORMED_PAYLOAD") == 1

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_job_attempts(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, httpx.Response(429))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        first = await run_next(engine)
        assert first.status == JobStatus.PENDING

        second = await run_next(engine)

        assert second.status == JobStatus.FAILED
        assert second.error_code == "RATE_LIMIT_EXCEEDED"
        assert second.error_message.startswith("Reintentos agotados (2/2)")
        assert len(fake_clio.calls("GET", MATTERS)) == 12

    @pytest.mark.asyncio
    async def test_cancel_stops_at_page_boundary(self, engine, connection, fake_clio):
        state = {}

        async def first_page_then_cancel(request):
            if "page_token" not in request.url.params:
                await engine.queue.request_cancel(state["job_id"])
                return clio_page([matter_payload(1)], next_token="p2")
            return clio_page([matter_payload(2)])

        fake_clio.add("GET", MATTERS, first_page_then_cancel)
        job = await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        state["job_id"] = job.id

        result = await run_next(engine)

        assert result.status == JobStatus.FAILED
        assert result.error_code == "CANCELLED"
        assert result.pages_completed == 1
        assert len(fake_clio.calls("GET", MATTERS)) == 1
        assert await _watermark(engine, connection.id) is None


class TestWebhookModes:
    """Jobs single / delete disparados por webhooks."""

    @pytest.mark.asyncio
    async def test_single_upserts_one_record(self, engine, connection, fake_clio):
        fake_clio.add("GET", "/api/v4/matters/789012.json", httpx.Response(200, json={"data": matter_payload()}))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.SINGLE, remote_id="789012")

        job = await run_next(engine)

        assert job.status == JobStatus.COMPLETED
        async with engine.session_factory() as session:
            stored = await EntityRepositoryImpl(session).get(EntityType.MATTER, connection.id, "789012")
        assert stored.values["display_number"] == "00001-Acme"
        assert await _watermark(engine, connection.id) is None

    @pytest.mark.asyncio
    async def test_single_not_found_soft_deletes(self, engine, connection, fake_clio):
        fake_clio.add("GET", "/api/v4/matters/789012.json", httpx.Response(200, json={"data": matter_payload()}))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.SINGLE, remote_id="789012")
        await run_next(engine)

        fake_clio.add("GET", "/api/v4/matters/789012.json", httpx.Response(404))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.SINGLE, remote_id="789012")
        job = await run_next(engine)

        assert job.status == JobStatus.COMPLETED
        assert await _count_matters(engine, connection.id) == 0
        assert await _count_matters(engine, connection.id, include_deleted=True) == 1

    @pytest.mark.asyncio
    async def test_delete_mode_soft_deletes_without_remote_call(self, engine, connection, fake_clio):
        fake_clio.add("GET", "/api/v4/matters/789012.json", httpx.Response(200, json={"data": matter_payload()}))
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.SINGLE, remote_id="789012")
        await run_next(engine)
        calls_before = len(fake_clio.requests)

        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.DELETE, remote_id="789012")
        job = await run_next(engine)

        assert job.status == JobStatus.COMPLETED
        assert len(fake_clio.requests) == calls_before
        assert await _count_matters(engine, connection.id) == 0


class TestConnectionState:
    """Jobs de conexiones no utilizables."""

    @pytest.mark.asyncio
    async def test_disabled_connection_fails_job(self, engine, connection, fake_clio):
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        async with engine.session_factory() as session:
            await ConnectionRepositoryImpl(session).disable(connection.id)
            await session.commit()

        job = await run_next(engine)

        assert job.status == JobStatus.FAILED
        assert job.error_code == "CONNECTION_DISABLED"
        assert fake_clio.requests == []

    @pytest.mark.asyncio
    async def test_degraded_connection_fails_job(self, engine, connection, fake_clio):
        await engine.queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        async with engine.session_factory() as session:
            await ConnectionRepositoryImpl(session).set_status(connection.id, ConnectionStatus.DEGRADED)
            await session.commit()

        job = await run_next(engine)

        assert job.status == JobStatus.FAILED
        assert job.error_code == "REAUTHORIZATION_REQUIRED"
        assert fake_clio.requests == []


class TestErrorClassification:
    """Clasificacion de errores y cadena causal."""

    def test_app_exceptions_use_retryable_flag(self):
        assert classify(TransientRemoteError("503")) == ("TRANSIENT_REMOTE_ERROR", True)
        assert classify(MalformedPayload("matters", "id")) == ("MALFORMED_PAYLOAD", False)

    def test_database_errors_are_transient(self):
        exc = OperationalError("SELECT 1", {}, Exception("database is locked"))
        assert classify(exc) == ("DATABASE_UNAVAILABLE", True)

    def test_unknown_errors_are_not_retried(self):
        assert classify(KeyError("x")) == ("INTERNAL_ERROR", False)

    def test_error_chain_follows_causes(self):
        try:
            try:
                raise ConnectionResetError("reset by peer")
            except ConnectionResetError as e:
                raise TransientRemoteError("Clio no respondio") from e
        except TransientRemoteError as exc:
            chain = error_chain(exc)

        assert chain == [
            "TransientRemoteError: Clio no respondio",
            "ConnectionResetError: reset by peer",
        ]
