"""
Constantes relacionadas con la sincronizacion contra la API remota.
"""
from enum import Enum


class EntityType(str, Enum):
    """Tipos de entidad remota sincronizados localmente."""
    MATTER = "matters"
    CONTACT = "contacts"
    ACTIVITY = "activities"
    TASK = "tasks"
    USER = "users"


class SyncMode(str, Enum):
    """Modos de ejecucion de un job de sincronizacion."""
    FULL = "full"
    INCREMENTAL = "incremental"
    # Modos acotados disparados por webhooks (una sola entidad)
    SINGLE = "single"
    DELETE = "delete"


class JobStatus(str, Enum):
    """Estados posibles de un job de sincronizacion."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class ConnectionStatus(str, Enum):
    """Estados de una conexion con la cuenta remota."""
    ACTIVE = "active"
    # Refresh de credenciales fallido: requiere re-autorizacion del usuario
    DEGRADED = "degraded"
    # Desconectada por el usuario (soft-disable)
    DISABLED = "disabled"


class CredentialState(str, Enum):
    """Sub-estado de las credenciales, evaluado antes de cada lote."""
    VALID = "valid"
    EXPIRING = "expiring"
    INVALID = "invalid"


class WebhookAction(str, Enum):
    """Acciones notificadas por los webhooks remotos."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


# Nombre del modelo en los eventos webhook ("matter.updated") -> tipo de entidad
WEBHOOK_MODEL_ENTITY_TYPES = {
    "matter": EntityType.MATTER,
    "contact": EntityType.CONTACT,
    "activity": EntityType.ACTIVITY,
    "task": EntityType.TASK,
    "user": EntityType.USER,
}

SUPPORTED_WEBHOOK_PROVIDERS = frozenset({"clio"})

# Codigos de error estables reportados en el estado de los jobs
ERROR_CODE_CANCELLED = "CANCELLED"
ERROR_CODE_INTERNAL = "INTERNAL_ERROR"
ERROR_CODE_CONNECTION_DISABLED = "CONNECTION_DISABLED"
