"""
Servicios de aplicacion.

Contiene la logica de ejecucion de jobs reutilizable por el API y por el
proceso de workers independiente.
"""
from practice_sync.application.services.entity_handlers import EntityHandler, EntityHandlerRegistry
from practice_sync.application.services.sync_job_runner import SyncJobRunner, classify, error_chain

__all__ = [
    # Handlers por tipo de entidad
    "EntityHandler",
    "EntityHandlerRegistry",
    # Ejecucion de jobs
    "SyncJobRunner",
    "classify",
    "error_chain",
]
