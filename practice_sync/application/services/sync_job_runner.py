"""
Ejecucion de un job de sincronizacion reclamado de la cola.

Flujo de un job paginado (full / incremental):
1. Primer claim: se congela la ventana (sync_started_at y updated_since).
   Los reintentos reusan la misma ventana para no perder cambios.
2. Por pagina: fetch -> transform -> upsert + checkpoint en una sola
   transaccion. Un reintento retoma desde el ultimo cursor guardado.
3. Ultima pagina: upserts + avance de la marca de agua + COMPLETED en la
   misma transaccion. Un job que falla nunca mueve la marca de agua.

Jobs de webhook (single / delete) tocan una sola entidad y no mueven la
marca de agua.
"""
import time
from typing import List, Optional

from loguru import logger
from sqlalchemy.exc import DBAPIError, OperationalError

from practice_sync.application.services.entity_handlers import EntityHandlerRegistry
from practice_sync.domain.entities.connection import Connection
from practice_sync.domain.entities.sync_job import SyncJob
from practice_sync.infrastructure.database.session import SessionFactory
from practice_sync.infrastructure.metrics.metrics_recorder import MetricsRecorder
from practice_sync.infrastructure.queue.job_queue import JobLeaseLost, JobQueue
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.infrastructure.repositories.entity_repository_impl import EntityRepositoryImpl
from practice_sync.shared.constants.sync_constants import (
    ERROR_CODE_CANCELLED,
    ERROR_CODE_CONNECTION_DISABLED,
    ERROR_CODE_INTERNAL,
    ConnectionStatus,
    SyncMode,
)
from practice_sync.shared.exceptions.base import AppException
from practice_sync.shared.exceptions.sync import JobCancelled, ReauthorizationRequired
from practice_sync.shared.utils.backoff import BackoffPolicy
from practice_sync.shared.utils.datetime_utils import utc_now


ERROR_CODE_DATABASE = "DATABASE_UNAVAILABLE"


class ConnectionUnavailable(AppException):
    """La conexion del job fue deshabilitada o ya no existe."""

    def __init__(self, connection_id: int):
        super().__init__(
            message=f"La conexion {connection_id} esta deshabilitada",
            status_code=409,
            error_code=ERROR_CODE_CONNECTION_DISABLED,
            details={"connection_id": connection_id},
        )


def error_chain(exc: BaseException, limit: int = 10) -> List[str]:
    """Cadena causal del error (el primero es el error final)."""
    chain: List[str] = []
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen and len(chain) < limit:
        seen.add(id(current))
        chain.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return chain


def classify(exc: BaseException) -> tuple:
    """
    Clasifica un error en (error_code, retryable).

    - AppException: segun su atributo `retryable`.
    - Errores operacionales de base de datos: transitorios.
    - Cualquier otro: no reintentable (bug o dato inesperado).
    """
    if isinstance(exc, AppException):
        return exc.error_code, exc.retryable
    if isinstance(exc, OperationalError) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return ERROR_CODE_DATABASE, True
    return ERROR_CODE_INTERNAL, False


class SyncJobRunner:
    """Procesa jobs reclamados; nunca deja excepciones escapar hacia el worker."""

    def __init__(
        self,
        session_factory: SessionFactory,
        queue: JobQueue,
        registry: EntityHandlerRegistry,
        metrics: MetricsRecorder,
        *,
        retry_backoff: Optional[BackoffPolicy] = None,
    ):
        self._session_factory = session_factory
        self._queue = queue
        self._registry = registry
        self._metrics = metrics
        self._backoff = retry_backoff or BackoffPolicy(base_delay=5.0, max_delay=300.0)

    async def run(self, job: SyncJob) -> None:
        job_tag = f"[sync-job:{job.id}]"
        event_type = f"{job.entity_type.value}.{job.mode.value}"
        started = time.monotonic()

        logger.info(
            f"{job_tag} Iniciando {event_type} conexion={job.connection_id} "
            f"intento={job.attempts}/{job.max_attempts} cursor={'si' if job.cursor else 'no'}"
        )

        try:
            connection = await self._load_connection(job)
            if job.is_paged():
                records = await self._run_paged(job, connection)
            elif job.mode == SyncMode.SINGLE:
                records = await self._run_single(job, connection)
            else:
                records = await self._run_delete(job, connection)

            await self._metrics.record_event(event_type)
            logger.success(f"{job_tag} Completado: {records} registros")
        except JobLeaseLost as e:
            # Otro worker es ahora el dueño del job: no tocar su estado
            logger.warning(f"{job_tag} {e.message}")
        except Exception as e:
            await self._handle_failure(job, e, event_type)
        finally:
            await self._metrics.record_duration(event_type, (time.monotonic() - started) * 1000)

    async def _load_connection(self, job: SyncJob) -> Connection:
        async with self._session_factory() as session:
            connection = await ConnectionRepositoryImpl(session).get_by_id(job.connection_id)
        if connection is None or connection.status == ConnectionStatus.DISABLED:
            raise ConnectionUnavailable(job.connection_id)
        if connection.status == ConnectionStatus.DEGRADED:
            raise ReauthorizationRequired(connection.id, "conexion degradada")
        return connection

    async def _run_paged(self, job: SyncJob, connection: Connection) -> int:
        handler = self._registry.get(job.entity_type)

        if job.sync_started_at is None:
            await self._freeze_window(job)

        cursor = job.cursor
        pages = job.pages_completed
        records = job.records_processed

        while True:
            if await self._queue.is_cancel_requested(job.id):
                raise JobCancelled(job.id)

            page = await handler.fetch_page(connection, cursor, job.updated_since)
            entities = handler.transform_page(connection.id, page.records)

            async with self._session_factory() as session:
                await handler.upsert(EntityRepositoryImpl(session), entities)
                pages += 1
                records += len(entities)

                if page.done:
                    await ConnectionRepositoryImpl(session).advance_watermark(
                        connection.id, job.entity_type, job.sync_started_at
                    )
                    await self._queue.complete(
                        session, job, pages_completed=pages, records_processed=records
                    )
                else:
                    await self._queue.checkpoint(
                        session,
                        job,
                        cursor=page.next_cursor,
                        pages_completed=pages,
                        records_processed=records,
                    )
                await session.commit()

            logger.debug(f"[sync-job:{job.id}] Pagina {pages} persistida ({len(entities)} registros)")
            if page.done:
                return records
            cursor = page.next_cursor

    async def _freeze_window(self, job: SyncJob) -> None:
        sync_started_at = utc_now()
        async with self._session_factory() as session:
            updated_since = None
            if job.mode == SyncMode.INCREMENTAL:
                updated_since = await ConnectionRepositoryImpl(session).get_watermark(
                    job.connection_id, job.entity_type
                )
            await self._queue.freeze_window(
                session,
                job,
                sync_started_at=sync_started_at,
                updated_since=updated_since,
            )
            await session.commit()
        job.sync_started_at = sync_started_at
        job.updated_since = updated_since

    async def _run_single(self, job: SyncJob, connection: Connection) -> int:
        handler = self._registry.get(job.entity_type)
        payload = await handler.fetch_single(connection, job.remote_id)

        async with self._session_factory() as session:
            repository = EntityRepositoryImpl(session)
            if payload is None:
                # Borrado en Clio antes de procesar el webhook
                logger.info(f"[sync-job:{job.id}] {job.entity_type.value}/{job.remote_id} ya no existe - soft delete")
                await handler.soft_delete(repository, connection.id, job.remote_id)
            else:
                await handler.upsert(repository, [handler.transform(connection.id, payload)])
            await self._queue.complete(session, job, pages_completed=1, records_processed=1)
            await session.commit()
        return 1

    async def _run_delete(self, job: SyncJob, connection: Connection) -> int:
        handler = self._registry.get(job.entity_type)
        async with self._session_factory() as session:
            await handler.soft_delete(EntityRepositoryImpl(session), connection.id, job.remote_id)
            await self._queue.complete(session, job, pages_completed=1, records_processed=1)
            await session.commit()
        return 1

    async def _handle_failure(self, job: SyncJob, exc: Exception, event_type: str) -> None:
        job_tag = f"[sync-job:{job.id}]"
        chain = error_chain(exc)
        message = exc.message if isinstance(exc, AppException) else str(exc) or type(exc).__name__

        if isinstance(exc, JobCancelled):
            error_code, retryable = ERROR_CODE_CANCELLED, False
        else:
            error_code, retryable = classify(exc)

        if error_code == ERROR_CODE_INTERNAL:
            logger.exception(f"{job_tag} Error inesperado: {exc}")

        await self._metrics.record_error(event_type, error_code)

        try:
            if retryable and job.can_retry():
                await self._queue.requeue(
                    job,
                    delay_seconds=self._backoff.delay(job.attempts - 1),
                    error_code=error_code,
                    error_message=message,
                    error_chain=chain,
                )
                return

            if retryable:
                message = f"Reintentos agotados ({job.attempts}/{job.max_attempts}): {message}"
            await self._queue.fail(
                job,
                error_code=error_code,
                error_message=message,
                error_chain=chain,
            )
        except JobLeaseLost as e:
            logger.warning(f"{job_tag} {e.message}")
