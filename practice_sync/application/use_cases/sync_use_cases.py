"""
Casos de uso del orquestador de sincronizacion.

Patron asincrono:
- POST /sync encola un job por tipo de entidad y retorna de inmediato el
  batch_id (estado PENDING).
- El caller hace polling de GET /sync/{batch_id} hasta que todos los jobs
  terminen.
- Los workers procesan los jobs fuera del request/response.
"""
from typing import Iterable, List

from loguru import logger

from practice_sync.application.dto.sync_dto import (
    SyncBatchDTO,
    SyncCancelResponseDTO,
    SyncJobStatusDTO,
    SyncTriggerDTO,
)
from practice_sync.domain.entities.sync_job import SyncJob
from practice_sync.domain.repositories.connection_repository import IConnectionRepository
from practice_sync.infrastructure.queue.job_queue import JobQueue
from practice_sync.shared.constants.sync_constants import (
    ConnectionStatus,
    EntityType,
    JobStatus,
    SyncMode,
)
from practice_sync.shared.exceptions.domain import (
    ConnectionNotFound,
    EntityNotFoundException,
    UnsupportedEntityType,
)
from practice_sync.shared.exceptions.sync import ReauthorizationRequired


def parse_entity_types(raw: Iterable[str]) -> List[EntityType]:
    """
    Valida y normaliza los tipos pedidos (sin duplicados, en orden).
    Una lista vacia significa todos los tipos soportados.
    """
    result: List[EntityType] = []
    for value in raw:
        try:
            entity_type = EntityType(str(value).strip().lower())
        except ValueError:
            raise UnsupportedEntityType(value)
        if entity_type not in result:
            result.append(entity_type)
    return result or list(EntityType)


def aggregate_status(jobs: List[SyncJob]) -> JobStatus:
    """Estado agregado de un lote."""
    statuses = {job.status for job in jobs}
    if statuses == {JobStatus.COMPLETED}:
        return JobStatus.COMPLETED
    if statuses == {JobStatus.PENDING}:
        return JobStatus.PENDING
    if statuses <= {JobStatus.COMPLETED, JobStatus.FAILED}:
        return JobStatus.FAILED
    return JobStatus.IN_PROGRESS


class SyncUseCases:
    """
    Casos de uso para disparar y consultar sincronizaciones.
    """

    def __init__(self, connection_repository: IConnectionRepository, queue: JobQueue):
        """
        Args:
            connection_repository: Repositorio de conexiones (sesion del request)
            queue: Cola durable de jobs
        """
        self.connection_repository = connection_repository
        self.queue = queue

    async def trigger_sync(self, user_id: str, dto: SyncTriggerDTO) -> SyncBatchDTO:
        """
        Encola un job por tipo de entidad para la conexion del usuario.

        Raises:
            ConnectionNotFound: Si el usuario no tiene conexion activa
            ReauthorizationRequired: Si la conexion esta degradada
            UnsupportedEntityType: Si se pide un tipo desconocido
        """
        entity_types = parse_entity_types(dto.entities)

        connection = await self.connection_repository.get_active_by_user(user_id)
        if connection is None:
            raise ConnectionNotFound(user_id)
        if connection.status == ConnectionStatus.DEGRADED:
            raise ReauthorizationRequired(connection.id, "conexion degradada")

        mode = SyncMode.FULL if dto.full_sync else SyncMode.INCREMENTAL
        jobs = await self.queue.enqueue_batch(connection.id, entity_types, mode)

        logger.info(
            f"Sync {mode.value} disparado para usuario {user_id}: "
            f"batch={jobs[0].batch_id} entidades={[t.value for t in entity_types]}"
        )
        return self._to_batch_dto(jobs, connection_id=connection.id)

    async def get_batch_status(self, batch_id: str) -> SyncBatchDTO:
        """
        Raises:
            EntityNotFoundException: Si el lote no existe
        """
        jobs = await self.queue.list_batch(batch_id)
        if not jobs:
            raise EntityNotFoundException("SyncBatch", batch_id)
        return self._to_batch_dto(jobs, connection_id=jobs[0].connection_id)

    async def get_job_status(self, job_id: int) -> SyncJobStatusDTO:
        job = await self.queue.get(job_id)
        if job is None:
            raise EntityNotFoundException("SyncJob", job_id)
        return self.to_job_dto(job)

    async def cancel_batch(self, batch_id: str) -> SyncCancelResponseDTO:
        """
        Cancela un lote: los jobs pendientes terminan de inmediato, los que
        estan corriendo se detienen en el siguiente limite de pagina.
        """
        jobs = await self.queue.list_batch(batch_id)
        if not jobs:
            raise EntityNotFoundException("SyncBatch", batch_id)

        cancelled = await self.queue.cancel_batch(batch_id)
        logger.info(f"Cancelacion solicitada para batch {batch_id}: {cancelled} jobs activos")
        return SyncCancelResponseDTO(
            batch_id=batch_id,
            cancelled_jobs=cancelled,
            message="Cancelacion solicitada" if cancelled else "El lote ya habia terminado",
        )

    def _to_batch_dto(self, jobs: List[SyncJob], connection_id: int) -> SyncBatchDTO:
        return SyncBatchDTO(
            batch_id=jobs[0].batch_id,
            connection_id=connection_id,
            full_sync=all(job.mode == SyncMode.FULL for job in jobs),
            status=aggregate_status(jobs),
            jobs=[self.to_job_dto(job) for job in jobs],
        )

    @staticmethod
    def to_job_dto(job: SyncJob) -> SyncJobStatusDTO:
        return SyncJobStatusDTO(
            job_id=job.id,
            batch_id=job.batch_id,
            entity_type=job.entity_type.value,
            mode=job.mode.value,
            status=job.status,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            pages_completed=job.pages_completed,
            records_processed=job.records_processed,
            remote_id=job.remote_id,
            cancel_requested=job.cancel_requested,
            error_code=job.error_code,
            error_message=job.error_message,
            error_chain=job.error_chain,
            enqueued_at=job.enqueued_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )
