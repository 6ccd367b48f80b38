"""
Tests de la cola durable de jobs.

Verifica:
- FIFO por clave (connection_id, entity_type) y paralelismo entre claves
- Un solo IN_PROGRESS por clave aun con varias colas (procesos) compitiendo
- Cancelacion, reencolado con backoff y recuperacion de leases vencidos
"""
import asyncio
from datetime import timedelta

import pytest

from practice_sync.infrastructure.queue.job_queue import JobLeaseLost, JobQueue
from practice_sync.infrastructure.queue.key_lock import SyncKeyLockManager
from practice_sync.shared.constants.sync_constants import EntityType, JobStatus, SyncMode
from practice_sync.shared.utils.datetime_utils import utc_now


class FakeClock:
    def __init__(self):
        self.now = utc_now()

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(engine, clock):
    """Cola con reloj controlado sobre la misma base del engine."""
    return JobQueue(
        engine.session_factory,
        lease_seconds=60,
        poll_interval=0.01,
        max_attempts=3,
        clock=clock,
    )


async def _complete(engine, queue, job):
    async with engine.session_factory() as session:
        await queue.complete(session, job, pages_completed=1, records_processed=0)
        await session.commit()
    queue.release_key(job)


class TestEnqueue:
    """Encolado de jobs."""

    @pytest.mark.asyncio
    async def test_batch_shares_batch_id(self, queue, connection):
        jobs = await queue.enqueue_batch(
            connection.id, [EntityType.MATTER, EntityType.CONTACT], SyncMode.FULL
        )

        assert len(jobs) == 2
        assert jobs[0].batch_id == jobs[1].batch_id
        assert all(job.status == JobStatus.PENDING for job in jobs)
        assert all(job.attempts == 0 for job in jobs)
        assert [job.id for job in await queue.list_batch(jobs[0].batch_id)] == [job.id for job in jobs]

    @pytest.mark.asyncio
    async def test_webhook_job_keeps_remote_id(self, queue, connection):
        job = await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.SINGLE, remote_id=789012)

        assert job.remote_id == "789012"
        assert job.is_paged() is False


class TestDequeue:
    """Reglas de elegibilidad del claim."""

    @pytest.mark.asyncio
    async def test_claim_sets_lease_and_attempt(self, queue, connection, clock):
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        job = await queue.dequeue("w1", timeout=0)

        assert job.status == JobStatus.IN_PROGRESS
        assert job.worker_id == "w1"
        assert job.attempts == 1
        assert job.lease_expires_at == clock.now + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_empty_queue_times_out(self, queue):
        assert await queue.dequeue("w1", timeout=0) is None

    @pytest.mark.asyncio
    async def test_fifo_within_key(self, engine, queue, connection):
        first = await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        second = await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.INCREMENTAL)

        claimed = await queue.dequeue("w1", timeout=0)
        assert claimed.id == first.id

        # Aun liberando la clave en proceso, el job en curso bloquea al siguiente
        queue.release_key(claimed)
        assert await queue.dequeue("w2", timeout=0) is None

        await _complete(engine, queue, claimed)
        following = await queue.dequeue("w2", timeout=0)
        assert following.id == second.id

    @pytest.mark.asyncio
    async def test_different_keys_run_in_parallel(self, queue, connection):
        await queue.enqueue_batch(connection.id, [EntityType.MATTER, EntityType.CONTACT], SyncMode.FULL)

        first = await queue.dequeue("w1", timeout=0)
        second = await queue.dequeue("w2", timeout=0)

        assert {first.entity_type, second.entity_type} == {EntityType.MATTER, EntityType.CONTACT}

    @pytest.mark.asyncio
    async def test_concurrent_claims_in_one_process(self, queue, connection):
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        results = await asyncio.gather(*[queue.dequeue(f"w{i}", timeout=0) for i in range(4)])

        assert len([job for job in results if job is not None]) == 1

    @pytest.mark.asyncio
    async def test_two_processes_claim_once(self, engine, queue, connection, clock):
        other_process = JobQueue(
            engine.session_factory,
            key_locks=SyncKeyLockManager(),
            lease_seconds=60,
            poll_interval=0.01,
            clock=clock,
        )
        job = await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        results = await asyncio.gather(
            queue.dequeue("proc-a", timeout=0),
            other_process.dequeue("proc-b", timeout=0),
        )

        assert len([r for r in results if r is not None]) == 1
        stored = await queue.get(job.id)
        assert stored.status == JobStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_dequeue_wakes_up_on_enqueue(self, queue, connection):
        waiter = asyncio.create_task(queue.dequeue("w1", timeout=5))
        await asyncio.sleep(0.05)

        await queue.enqueue(connection.id, EntityType.USER, SyncMode.FULL)
        job = await asyncio.wait_for(waiter, timeout=5)

        assert job is not None
        assert job.entity_type == EntityType.USER


class TestCancel:
    """Cancelacion de jobs."""

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, queue, connection):
        job = await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)

        assert await queue.request_cancel(job.id) is True

        stored = await queue.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_code == "CANCELLED"
        assert await queue.dequeue("w1", timeout=0) is None

    @pytest.mark.asyncio
    async def test_cancel_running_job_sets_flag(self, queue, connection):
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        job = await queue.dequeue("w1", timeout=0)

        assert await queue.request_cancel(job.id) is True

        stored = await queue.get(job.id)
        assert stored.status == JobStatus.IN_PROGRESS
        assert await queue.is_cancel_requested(job.id) is True

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_is_noop(self, engine, queue, connection):
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        job = await queue.dequeue("w1", timeout=0)
        await _complete(engine, queue, job)

        assert await queue.request_cancel(job.id) is False
        assert (await queue.get(job.id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_for_connection(self, queue, connection):
        await queue.enqueue_batch(connection.id, [EntityType.MATTER, EntityType.TASK], SyncMode.FULL)
        await queue.dequeue("w1", timeout=0)

        assert await queue.cancel_for_connection(connection.id) == 2


class TestRetryAndRecovery:
    """Reencolado con backoff y leases vencidos."""

    @pytest.mark.asyncio
    async def test_requeue_waits_for_backoff(self, engine, queue, connection, clock):
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        job = await queue.dequeue("w1", timeout=0)
        async with engine.session_factory() as session:
            await queue.checkpoint(session, job, cursor="p2", pages_completed=1, records_processed=2)
            await session.commit()

        await queue.requeue(
            job,
            delay_seconds=30,
            error_code="TRANSIENT_REMOTE_ERROR",
            error_message="503",
            error_chain=["TransientRemoteError: 503"],
        )
        queue.release_key(job)

        assert await queue.dequeue("w1", timeout=0) is None
        clock.advance(31)
        retried = await queue.dequeue("w1", timeout=0)

        assert retried.id == job.id
        assert retried.attempts == 2
        assert retried.cursor == "p2"
        assert retried.pages_completed == 1
        assert retried.error_chain == ["TransientRemoteError: 503"]

    @pytest.mark.asyncio
    async def test_stale_lease_is_recovered(self, engine, queue, connection, clock):
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        job = await queue.dequeue("w1", timeout=0)
        queue.release_key(job)

        assert await queue.recover_stale() == 0
        clock.advance(61)
        assert await queue.recover_stale() == 1

        stored = await queue.get(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.error_code == "LEASE_EXPIRED"

        # El worker original ya no puede escribir progreso
        async with engine.session_factory() as session:
            with pytest.raises(JobLeaseLost):
                await queue.checkpoint(session, job, cursor="p2", pages_completed=1, records_processed=1)

    @pytest.mark.asyncio
    async def test_stale_lease_after_last_attempt_fails(self, engine, connection, clock):
        queue = JobQueue(engine.session_factory, lease_seconds=60, max_attempts=1, clock=clock)
        await queue.enqueue(connection.id, EntityType.MATTER, SyncMode.FULL)
        job = await queue.dequeue("w1", timeout=0)

        clock.advance(61)
        await queue.recover_stale()

        stored = await queue.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_code == "LEASE_EXPIRED"
