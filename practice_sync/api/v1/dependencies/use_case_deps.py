"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Depends

from practice_sync.api.v1.dependencies.repository_deps import (
    get_connection_repository,
    get_sync_engine,
)
from practice_sync.application.use_cases.connection_use_cases import ConnectionUseCases
from practice_sync.application.use_cases.metrics_use_cases import MetricsUseCases
from practice_sync.application.use_cases.sync_use_cases import SyncUseCases
from practice_sync.application.use_cases.webhook_use_cases import WebhookUseCases
from practice_sync.core.engine import SyncEngine
from practice_sync.domain.repositories.connection_repository import IConnectionRepository


async def get_sync_use_cases(
    connection_repository: IConnectionRepository = Depends(get_connection_repository),
    engine: SyncEngine = Depends(get_sync_engine),
) -> SyncUseCases:
    """
    Dependencia para obtener los casos de uso de sincronizacion.

    Args:
        connection_repository: Repositorio de conexiones
        engine: SyncEngine (cola de jobs)

    Returns:
        SyncUseCases: Instancia de casos de uso de sincronizacion
    """
    return SyncUseCases(connection_repository, engine.queue)


async def get_webhook_use_cases(
    connection_repository: IConnectionRepository = Depends(get_connection_repository),
    engine: SyncEngine = Depends(get_sync_engine),
) -> WebhookUseCases:
    """
    Dependencia para obtener los casos de uso de webhooks.

    Returns:
        WebhookUseCases: Instancia con verificador de firmas, cola y cliente Clio
    """
    return WebhookUseCases(
        connection_repository,
        engine.queue,
        engine.verifier,
        engine.metrics,
        client=engine.clio,
        callback_base_url=engine.config.WEBHOOK_CALLBACK_BASE_URL,
    )


async def get_connection_use_cases(
    connection_repository: IConnectionRepository = Depends(get_connection_repository),
    engine: SyncEngine = Depends(get_sync_engine),
) -> ConnectionUseCases:
    """
    Dependencia para obtener los casos de uso de conexiones.

    Returns:
        ConnectionUseCases: Instancia de casos de uso de conexiones
    """
    return ConnectionUseCases(
        connection_repository,
        engine.queue,
        engine.cipher,
        refresh_skew_seconds=engine.config.CLIO_TOKEN_REFRESH_SKEW_SECONDS,
    )


def get_metrics_use_cases(
    engine: SyncEngine = Depends(get_sync_engine),
) -> MetricsUseCases:
    """
    Dependencia para obtener los casos de uso de metricas.

    Returns:
        MetricsUseCases: Instancia de casos de uso de metricas
    """
    return MetricsUseCases(engine.metrics)
