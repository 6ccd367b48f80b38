"""
DTOs relacionados con los jobs de sincronizacion.
Definen la estructura de datos para disparar syncs y consultar su progreso.
"""
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from practice_sync.shared.constants.sync_constants import JobStatus


class SyncTriggerDTO(BaseModel):
    """DTO para disparar una sincronizacion (POST /sync)."""

    model_config = ConfigDict(populate_by_name=True)

    entities: List[str] = Field(
        default_factory=list,
        description="Tipos de entidad a sincronizar (vacio = todos)"
    )
    full_sync: bool = Field(
        False,
        alias="fullSync",
        description="True ignora la marca de agua y trae todo"
    )


class SyncJobStatusDTO(BaseModel):
    """DTO de estado de un job (progreso por tipo de entidad)."""

    job_id: int = Field(..., description="ID del job")
    batch_id: Optional[str] = Field(None, description="Lote al que pertenece")
    entity_type: str = Field(..., description="Tipo de entidad")
    mode: str = Field(..., description="full, incremental, single o delete")
    status: JobStatus = Field(..., description="Estado del job")
    attempts: int = Field(..., description="Intentos realizados")
    max_attempts: int = Field(..., description="Intentos maximos")
    pages_completed: int = Field(0, description="Paginas persistidas")
    records_processed: int = Field(0, description="Registros persistidos")
    remote_id: Optional[str] = Field(None, description="Entidad puntual (jobs de webhook)")
    cancel_requested: bool = Field(False, description="Cancelacion solicitada")
    error_code: Optional[str] = Field(None, description="Codigo de error estable")
    error_message: Optional[str] = Field(None, description="Resumen legible del error")
    error_chain: List[str] = Field(default_factory=list, description="Cadena causal del error")
    enqueued_at: Optional[datetime] = Field(None, description="Fecha de encolado")
    started_at: Optional[datetime] = Field(None, description="Primer inicio")
    completed_at: Optional[datetime] = Field(None, description="Fecha de finalizacion")

    class Config:
        """Configuración de Pydantic."""
        from_attributes = True


class SyncBatchDTO(BaseModel):
    """DTO de respuesta de un lote de sincronizacion."""

    batch_id: str = Field(..., description="Identificador del lote")
    connection_id: int = Field(..., description="Conexion sincronizada")
    full_sync: bool = Field(..., description="Modo completo o incremental")
    status: JobStatus = Field(..., description="Estado agregado del lote")
    jobs: List[SyncJobStatusDTO] = Field(default_factory=list, description="Un job por tipo de entidad")


class SyncCancelResponseDTO(BaseModel):
    """DTO de respuesta de una cancelacion."""

    batch_id: str
    cancelled_jobs: int = Field(..., description="Jobs activos marcados para cancelar")
    message: str
