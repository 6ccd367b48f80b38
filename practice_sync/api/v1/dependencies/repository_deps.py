"""
Dependencias para inyeccion de repositorios y del SyncEngine.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from practice_sync.core.engine import SyncEngine
from practice_sync.infrastructure.database.session import get_db
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl


def get_sync_engine(request: Request) -> SyncEngine:
    """
    Retorna el SyncEngine creado en el startup de la aplicacion.

    Args:
        request: Peticion HTTP actual

    Returns:
        SyncEngine: Motor con cola, clientes y metricas
    """
    return request.app.state.sync_engine


async def get_connection_repository(
    session: AsyncSession = Depends(get_db)
) -> ConnectionRepositoryImpl:
    """
    Dependencia para obtener el repositorio de conexiones.

    Args:
        session: Sesion de base de datos

    Returns:
        ConnectionRepositoryImpl: Instancia del repositorio de conexiones
    """
    return ConnectionRepositoryImpl(session)
