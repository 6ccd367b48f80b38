"""
Endpoints para el ciclo de vida de la conexion con la cuenta remota.
"""
from fastapi import APIRouter, Depends, status

from practice_sync.api.v1.dependencies.use_case_deps import get_connection_use_cases
from practice_sync.application.dto.connection_dto import (
    ConnectionLinkDTO,
    ConnectionResponseDTO,
    DisconnectResponseDTO,
)
from practice_sync.application.use_cases.connection_use_cases import ConnectionUseCases


router = APIRouter(prefix="/connections", tags=["Connections"])


@router.post(
    "",
    response_model=ConnectionResponseDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Vincular cuenta remota"
)
async def link_connection(
    dto: ConnectionLinkDTO,
    use_cases: ConnectionUseCases = Depends(get_connection_use_cases)
) -> ConnectionResponseDTO:
    """
    Guarda (cifradas) las credenciales obtenidas en el intercambio OAuth.

    Args:
        dto: Usuario, cuenta remota y tokens
        use_cases: Casos de uso de conexiones (inyectado)

    Returns:
        ConnectionResponseDTO: Conexion activa, sin credenciales
    """
    return await use_cases.link(dto)


@router.get(
    "/{user_id}",
    response_model=ConnectionResponseDTO,
    summary="Obtener la conexion de un usuario"
)
async def get_connection(
    user_id: str,
    use_cases: ConnectionUseCases = Depends(get_connection_use_cases)
) -> ConnectionResponseDTO:
    return await use_cases.get_connection(user_id)


@router.delete(
    "/{user_id}",
    response_model=DisconnectResponseDTO,
    summary="Desconectar cuenta remota"
)
async def disconnect(
    user_id: str,
    use_cases: ConnectionUseCases = Depends(get_connection_use_cases)
) -> DisconnectResponseDTO:
    """
    Cancela los jobs activos y deshabilita la conexion.
    Los datos ya sincronizados se conservan.
    """
    return await use_cases.disconnect(user_id)
