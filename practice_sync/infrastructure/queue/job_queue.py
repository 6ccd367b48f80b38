"""
Cola durable de jobs de sincronizacion sobre la tabla sync_jobs.

Garantias:
- A lo sumo un job IN_PROGRESS por clave (connection_id, entity_type).
- FIFO dentro de una clave: un job solo es elegible si no hay otro job
  no terminal mas antiguo de la misma clave.
- Claves distintas se procesan en paralelo.

El claim combina el lock en proceso (no bloqueante) con un UPDATE
condicional; la unicidad entre procesos depende solo del UPDATE.
"""
import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from loguru import logger
from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from practice_sync.domain.entities.sync_job import SyncJob
from practice_sync.infrastructure.database.models import SyncJobModel
from practice_sync.infrastructure.database.session import SessionFactory
from practice_sync.infrastructure.queue.key_lock import SyncKeyLockManager
from practice_sync.shared.constants.sync_constants import (
    ERROR_CODE_CANCELLED,
    EntityType,
    JobStatus,
    SyncMode,
)
from practice_sync.shared.exceptions.base import AppException
from practice_sync.shared.utils.datetime_utils import ensure_utc, utc_now


# Cuantos candidatos se evaluan por intento de claim
CLAIM_CANDIDATES = 20

ERROR_CODE_LEASE_EXPIRED = "LEASE_EXPIRED"


class JobLeaseLost(AppException):
    """El job ya no pertenece a este worker (lease expirado y recuperado)."""

    def __init__(self, job_id: int, worker_id: Optional[str]):
        super().__init__(
            message=f"El worker {worker_id} perdio el lease del job {job_id}",
            status_code=409,
            error_code="LEASE_LOST",
            details={"job_id": job_id},
        )


class JobQueue:
    """Operaciones de la cola; cada metodo abre su propia sesion salvo los que reciben una."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        key_locks: Optional[SyncKeyLockManager] = None,
        lease_seconds: int = 600,
        poll_interval: float = 2.0,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._key_locks = key_locks or SyncKeyLockManager()
        self._lease = timedelta(seconds=lease_seconds)
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._now = clock
        self._wakeup = asyncio.Event()

    # ------------------------------------------------------------------
    # Encolado
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        connection_id: int,
        entity_type: EntityType,
        mode: SyncMode,
        *,
        remote_id: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> SyncJob:
        """
        Encola un job PENDING.

        Returns:
            SyncJob: Job persistido (con ID asignado)
        """
        jobs = await self.enqueue_batch(
            connection_id,
            [entity_type],
            mode,
            remote_id=remote_id,
            batch_id=batch_id,
        )
        return jobs[0]

    async def enqueue_batch(
        self,
        connection_id: int,
        entity_types: Iterable[EntityType],
        mode: SyncMode,
        *,
        remote_id: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> List[SyncJob]:
        """Encola un job por tipo de entidad en una sola transaccion."""
        batch_id = batch_id or str(uuid.uuid4())
        now = self._now()
        async with self._session_factory() as session:
            models = [
                SyncJobModel(
                    batch_id=batch_id,
                    connection_id=connection_id,
                    entity_type=EntityType(entity_type).value,
                    mode=SyncMode(mode).value,
                    remote_id=str(remote_id) if remote_id is not None else None,
                    status=JobStatus.PENDING,
                    attempts=0,
                    max_attempts=self._max_attempts,
                    pages_completed=0,
                    records_processed=0,
                    cancel_requested=False,
                    available_at=now,
                    enqueued_at=now,
                    updated_at=now,
                )
                for entity_type in entity_types
            ]
            session.add_all(models)
            await session.commit()
            jobs = [self._to_entity(m) for m in models]

        for job in jobs:
            logger.info(
                f"Job {job.id} encolado: conexion={job.connection_id} "
                f"entidad={job.entity_type.value} modo={job.mode.value}"
            )
        self._wakeup.set()
        return jobs

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def dequeue(self, worker_id: str, timeout: Optional[float] = None) -> Optional[SyncJob]:
        """
        Bloquea hasta obtener un job elegible o agotar el timeout.

        El job retornado queda IN_PROGRESS con lease, y su clave tomada en el
        lock en proceso: el caller debe llamar `release_key(job)` al terminar.

        Returns:
            Optional[SyncJob]: Job reclamado, o None si vencio el timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while True:
            self._wakeup.clear()
            job = await self._try_claim(worker_id)
            if job is not None:
                return job

            wait_s = self._poll_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait_s = min(wait_s, remaining)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=wait_s)
            except asyncio.TimeoutError:
                pass

    def release_key(self, job: SyncJob) -> None:
        self._key_locks.release(job.key)

    async def _try_claim(self, worker_id: str) -> Optional[SyncJob]:
        now = self._now()
        earlier = aliased(SyncJobModel)

        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncJobModel)
                .where(SyncJobModel.status == JobStatus.PENDING)
                .where(SyncJobModel.available_at <= now)
                .where(~exists().where(and_(
                    earlier.connection_id == SyncJobModel.connection_id,
                    earlier.entity_type == SyncJobModel.entity_type,
                    earlier.id < SyncJobModel.id,
                    earlier.status.in_([JobStatus.PENDING, JobStatus.IN_PROGRESS]),
                )))
                .order_by(SyncJobModel.id)
                .limit(CLAIM_CANDIDATES)
            )
            # Se copian los valores: un rollback expira las instancias cargadas
            candidates = [(m.id, m.connection_id, m.entity_type) for m in result.scalars().all()]

            for job_id, connection_id, entity_type in candidates:
                key = (connection_id, entity_type)
                if not self._key_locks.try_acquire(key):
                    continue

                claimed = await self._claim(session, job_id, key, worker_id, now)
                if not claimed:
                    await session.rollback()
                    self._key_locks.release(key)
                    continue

                await session.commit()
                job = await self._get_in_session(session, job_id)
                logger.info(
                    f"Job {job.id} reclamado por {worker_id} "
                    f"(intento {job.attempts}/{job.max_attempts})"
                )
                return job

        return None

    async def _claim(self, session: AsyncSession, job_id: int, key: tuple, worker_id: str, now: datetime) -> bool:
        """
        UPDATE condicional: solo gana si el job sigue PENDING y no hay otro job
        de la clave IN_PROGRESS (ni uno mas antiguo pendiente).
        """
        connection_id, entity_type = key
        other = aliased(SyncJobModel)
        blocking = (
            select(other.id)
            .where(other.connection_id == connection_id)
            .where(other.entity_type == entity_type)
            .where(other.id != job_id)
            .where(or_(
                other.status == JobStatus.IN_PROGRESS,
                and_(other.id < job_id, other.status == JobStatus.PENDING),
            ))
        )
        result = await session.execute(
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id)
            .where(SyncJobModel.status == JobStatus.PENDING)
            .where(~exists(blocking))
            .values(
                status=JobStatus.IN_PROGRESS,
                worker_id=worker_id,
                attempts=SyncJobModel.attempts + 1,
                started_at=func.coalesce(SyncJobModel.started_at, now),
                lease_expires_at=now + self._lease,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    # ------------------------------------------------------------------
    # Progreso y transiciones (dentro de la transaccion del caller)
    # ------------------------------------------------------------------

    async def freeze_window(
        self,
        session: AsyncSession,
        job: SyncJob,
        *,
        sync_started_at: datetime,
        updated_since: Optional[datetime],
    ) -> None:
        """Fija la ventana del sync en el primer claim; los reintentos la reusan."""
        await self._update_owned(
            session,
            job,
            sync_started_at=sync_started_at,
            updated_since=updated_since,
        )

    async def checkpoint(
        self,
        session: AsyncSession,
        job: SyncJob,
        *,
        cursor: Optional[str],
        pages_completed: int,
        records_processed: int,
    ) -> None:
        """
        Guarda el cursor de la siguiente pagina y renueva el lease.
        Se commitea junto con los upserts de la pagina.
        """
        await self._update_owned(
            session,
            job,
            cursor=cursor,
            pages_completed=pages_completed,
            records_processed=records_processed,
            lease_expires_at=self._now() + self._lease,
        )

    async def complete(
        self,
        session: AsyncSession,
        job: SyncJob,
        *,
        pages_completed: int,
        records_processed: int,
    ) -> None:
        now = self._now()
        await self._update_owned(
            session,
            job,
            status=JobStatus.COMPLETED,
            cursor=None,
            pages_completed=pages_completed,
            records_processed=records_processed,
            completed_at=now,
            lease_expires_at=None,
            error_code=None,
            error_message=None,
        )

    async def _update_owned(self, session: AsyncSession, job: SyncJob, **values) -> None:
        values.setdefault("updated_at", self._now())
        result = await session.execute(
            update(SyncJobModel)
            .where(SyncJobModel.id == job.id)
            .where(SyncJobModel.status == JobStatus.IN_PROGRESS)
            .where(SyncJobModel.worker_id == job.worker_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) != 1:
            raise JobLeaseLost(job.id, job.worker_id)

    # ------------------------------------------------------------------
    # Transiciones de error (sesion propia)
    # ------------------------------------------------------------------

    async def requeue(
        self,
        job: SyncJob,
        *,
        delay_seconds: float,
        error_code: str,
        error_message: str,
        error_chain: List[str],
    ) -> None:
        """Devuelve el job a PENDING con backoff; el cursor se conserva."""
        now = self._now()
        async with self._session_factory() as session:
            await self._update_owned(
                session,
                job,
                status=JobStatus.PENDING,
                worker_id=None,
                lease_expires_at=None,
                available_at=now + timedelta(seconds=delay_seconds),
                error_code=error_code,
                error_message=error_message,
                error_chain=list(error_chain),
            )
            await session.commit()
        logger.warning(
            f"Job {job.id} reencolado en {delay_seconds:.1f}s "
            f"(intento {job.attempts}/{job.max_attempts}): {error_code}"
        )
        self._wakeup.set()

    async def fail(
        self,
        job: SyncJob,
        *,
        error_code: str,
        error_message: str,
        error_chain: List[str],
    ) -> None:
        now = self._now()
        async with self._session_factory() as session:
            await self._update_owned(
                session,
                job,
                status=JobStatus.FAILED,
                lease_expires_at=None,
                completed_at=now,
                error_code=error_code,
                error_message=error_message,
                error_chain=list(error_chain),
            )
            await session.commit()
        logger.error(f"Job {job.id} FAILED: {error_code} - {error_message}")
        # Libera a los jobs siguientes de la misma clave
        self._wakeup.set()

    # ------------------------------------------------------------------
    # Cancelacion
    # ------------------------------------------------------------------

    async def request_cancel(self, job_id: int) -> bool:
        """
        Cancela un job.

        - PENDING: pasa directo a FAILED/CANCELLED.
        - IN_PROGRESS: se marca cancel_requested; el worker lo detiene en el
          siguiente limite de pagina.
        - Terminal: no hace nada.

        Returns:
            bool: True si el job estaba activo
        """
        async with self._session_factory() as session:
            changed = await self._cancel_where(session, SyncJobModel.id == job_id)
            await session.commit()
        if changed:
            self._wakeup.set()
        return changed > 0

    async def cancel_batch(self, batch_id: str) -> int:
        async with self._session_factory() as session:
            changed = await self._cancel_where(session, SyncJobModel.batch_id == batch_id)
            await session.commit()
        if changed:
            self._wakeup.set()
        return changed

    async def cancel_for_connection(
        self,
        connection_id: int,
        *,
        error_code: str = ERROR_CODE_CANCELLED,
    ) -> int:
        """Cancela todos los jobs no terminales de una conexion."""
        async with self._session_factory() as session:
            changed = await self._cancel_where(
                session,
                SyncJobModel.connection_id == connection_id,
                error_code=error_code,
            )
            await session.commit()
        if changed:
            self._wakeup.set()
        return changed

    async def _cancel_where(self, session: AsyncSession, condition, error_code: str = ERROR_CODE_CANCELLED) -> int:
        now = self._now()
        pending = await session.execute(
            update(SyncJobModel)
            .where(condition)
            .where(SyncJobModel.status == JobStatus.PENDING)
            .values(
                status=JobStatus.FAILED,
                cancel_requested=True,
                completed_at=now,
                updated_at=now,
                error_code=error_code,
                error_message="Job cancelado antes de iniciar",
            )
            .execution_options(synchronize_session=False)
        )
        running = await session.execute(
            update(SyncJobModel)
            .where(condition)
            .where(SyncJobModel.status == JobStatus.IN_PROGRESS)
            .values(cancel_requested=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return (pending.rowcount or 0) + (running.rowcount or 0)

    async def is_cancel_requested(self, job_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncJobModel.cancel_requested).where(SyncJobModel.id == job_id)
            )
            return bool(result.scalar_one_or_none())

    # ------------------------------------------------------------------
    # Recuperacion
    # ------------------------------------------------------------------

    async def recover_stale(self) -> int:
        """
        Devuelve a PENDING los jobs IN_PROGRESS con lease vencido (worker
        caido). Los que ya agotaron sus intentos pasan a FAILED.

        Returns:
            int: Jobs recuperados o fallados
        """
        now = self._now()
        async with self._session_factory() as session:
            exhausted = await session.execute(
                update(SyncJobModel)
                .where(SyncJobModel.status == JobStatus.IN_PROGRESS)
                .where(SyncJobModel.lease_expires_at < now)
                .where(SyncJobModel.attempts >= SyncJobModel.max_attempts)
                .values(
                    status=JobStatus.FAILED,
                    worker_id=None,
                    lease_expires_at=None,
                    completed_at=now,
                    updated_at=now,
                    error_code=ERROR_CODE_LEASE_EXPIRED,
                    error_message="Lease vencido tras agotar los intentos",
                )
                .execution_options(synchronize_session=False)
            )
            recovered = await session.execute(
                update(SyncJobModel)
                .where(SyncJobModel.status == JobStatus.IN_PROGRESS)
                .where(SyncJobModel.lease_expires_at < now)
                .values(
                    status=JobStatus.PENDING,
                    worker_id=None,
                    lease_expires_at=None,
                    available_at=now,
                    updated_at=now,
                    error_code=ERROR_CODE_LEASE_EXPIRED,
                    error_message="Lease vencido: job devuelto a la cola",
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        total = (exhausted.rowcount or 0) + (recovered.rowcount or 0)
        if total:
            logger.warning(f"Jobs con lease vencido: {recovered.rowcount or 0} reencolados, {exhausted.rowcount or 0} fallados")
            self._wakeup.set()
        return total

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    async def get(self, job_id: int) -> Optional[SyncJob]:
        async with self._session_factory() as session:
            return await self._get_in_session(session, job_id)

    async def list_batch(self, batch_id: str) -> List[SyncJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncJobModel)
                .where(SyncJobModel.batch_id == batch_id)
                .order_by(SyncJobModel.id)
            )
            return [self._to_entity(m) for m in result.scalars().all()]

    async def _get_in_session(self, session: AsyncSession, job_id: int) -> Optional[SyncJob]:
        result = await session.execute(
            select(SyncJobModel)
            .where(SyncJobModel.id == job_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    @staticmethod
    def _to_entity(model: SyncJobModel) -> SyncJob:
        return SyncJob(
            id=model.id,
            batch_id=model.batch_id,
            connection_id=model.connection_id,
            entity_type=EntityType(model.entity_type),
            mode=SyncMode(model.mode),
            remote_id=model.remote_id,
            status=JobStatus(model.status),
            attempts=model.attempts or 0,
            max_attempts=model.max_attempts,
            cursor=model.cursor,
            pages_completed=model.pages_completed or 0,
            records_processed=model.records_processed or 0,
            updated_since=ensure_utc(model.updated_since),
            sync_started_at=ensure_utc(model.sync_started_at),
            available_at=ensure_utc(model.available_at),
            lease_expires_at=ensure_utc(model.lease_expires_at),
            worker_id=model.worker_id,
            cancel_requested=bool(model.cancel_requested),
            error_code=model.error_code,
            error_message=model.error_message,
            error_chain=list(model.error_chain or []),
            enqueued_at=ensure_utc(model.enqueued_at),
            started_at=ensure_utc(model.started_at),
            completed_at=ensure_utc(model.completed_at),
            updated_at=ensure_utc(model.updated_at),
        )
