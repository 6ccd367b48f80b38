"""
Entidad de dominio: SyncJob (unidad de trabajo de sincronizacion).

Maquina de estados:
    PENDING -> IN_PROGRESS -> COMPLETED
                           -> PENDING (reintento con backoff)
                           -> FAILED (no reintentable o reintentos agotados)
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from practice_sync.shared.constants.sync_constants import (
    EntityType,
    JobStatus,
    SyncMode,
    TERMINAL_JOB_STATUSES,
)


@dataclass
class SyncJob:
    """Job {conexion, tipo de entidad, modo} con su checkpoint de progreso."""

    id: Optional[int] = None
    batch_id: Optional[str] = None
    connection_id: int = 0
    entity_type: EntityType = EntityType.MATTER
    mode: SyncMode = SyncMode.INCREMENTAL
    remote_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 5
    cursor: Optional[str] = None
    pages_completed: int = 0
    records_processed: int = 0
    updated_since: Optional[datetime] = None
    sync_started_at: Optional[datetime] = None
    available_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    worker_id: Optional[str] = None
    cancel_requested: bool = False
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_chain: List[str] = field(default_factory=list)
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple:
        """Clave de serializacion: un solo job IN_PROGRESS por clave."""
        return (self.connection_id, EntityType(self.entity_type).value)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def is_paged(self) -> bool:
        """Los modos full/incremental recorren paginas; single/delete no."""
        return self.mode in (SyncMode.FULL, SyncMode.INCREMENTAL)

    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts
