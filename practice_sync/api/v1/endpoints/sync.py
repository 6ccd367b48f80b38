"""
Endpoints del orquestador de sincronizacion.

POST /sync encola un job por tipo de entidad y responde 202 de inmediato;
el progreso se consulta con GET /sync/{batch_id}.
"""
from fastapi import APIRouter, Depends, Header, status

from practice_sync.api.v1.dependencies.use_case_deps import get_sync_use_cases
from practice_sync.application.dto.sync_dto import (
    SyncBatchDTO,
    SyncCancelResponseDTO,
    SyncJobStatusDTO,
    SyncTriggerDTO,
)
from practice_sync.application.use_cases.sync_use_cases import SyncUseCases


router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post(
    "",
    response_model=SyncBatchDTO,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Disparar una sincronizacion"
)
async def trigger_sync(
    dto: SyncTriggerDTO,
    user_id: str = Header(..., alias="X-User-Id", description="Usuario autenticado"),
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncBatchDTO:
    """
    Encola la sincronizacion de los tipos pedidos para la conexion del usuario.

    Args:
        dto: Tipos de entidad y modo (completo o incremental)
        user_id: Header X-User-Id inyectado por la capa de autenticacion
        use_cases: Casos de uso de sincronizacion (inyectado)

    Returns:
        SyncBatchDTO: Lote creado, con todos sus jobs en PENDING
    """
    return await use_cases.trigger_sync(user_id, dto)


@router.get(
    "/jobs/{job_id}",
    response_model=SyncJobStatusDTO,
    summary="Estado de un job"
)
async def get_job_status(
    job_id: int,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncJobStatusDTO:
    return await use_cases.get_job_status(job_id)


@router.get(
    "/{batch_id}",
    response_model=SyncBatchDTO,
    summary="Progreso de un lote"
)
async def get_batch_status(
    batch_id: str,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncBatchDTO:
    """
    Progreso por tipo de entidad (paginas, registros, errores).

    Args:
        batch_id: Identificador devuelto por POST /sync
        use_cases: Casos de uso de sincronizacion (inyectado)

    Returns:
        SyncBatchDTO: Estado agregado y detalle por job
    """
    return await use_cases.get_batch_status(batch_id)


@router.post(
    "/{batch_id}/cancel",
    response_model=SyncCancelResponseDTO,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Cancelar un lote"
)
async def cancel_batch(
    batch_id: str,
    use_cases: SyncUseCases = Depends(get_sync_use_cases)
) -> SyncCancelResponseDTO:
    """Los jobs en curso se detienen en el siguiente limite de pagina."""
    return await use_cases.cancel_batch(batch_id)
