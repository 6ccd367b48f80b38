"""
Excepciones del motor de sincronizacion.

Clasificacion usada por el pool de workers:
- Transitorias (retryable=True): se reintentan con backoff hasta el limite.
- No reintentables: el job pasa a FAILED inmediatamente.
"""
from typing import Any, Optional

from practice_sync.shared.exceptions.base import AppException


class TransientRemoteError(AppException):
    """Error transitorio de red, timeout o 5xx de la API remota."""

    retryable = True

    def __init__(
        self,
        message: str,
        error_code: str = "TRANSIENT_REMOTE_ERROR",
        status: Optional[int] = None,
    ):
        super().__init__(
            message=message,
            status_code=503,
            error_code=error_code,
            details={"remote_status": status} if status else None,
        )
        self.remote_status = status


class RateLimitExceeded(TransientRemoteError):
    """La API remota siguio respondiendo 429 tras agotar los reintentos."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message=message, error_code="RATE_LIMIT_EXCEEDED", status=429)
        self.attempts = attempts
        self.details["attempts"] = attempts


class ReauthorizationRequired(AppException):
    """El refresh de credenciales fallo; la conexion queda suspendida."""

    def __init__(self, connection_id: Any, reason: str = ""):
        super().__init__(
            message=(
                f"La conexion {connection_id} requiere re-autorizacion"
                + (f": {reason}" if reason else "")
            ),
            status_code=409,
            error_code="REAUTHORIZATION_REQUIRED",
            details={"connection_id": str(connection_id)},
        )
        self.connection_id = connection_id


class MalformedPayload(AppException):
    """Payload remoto que viola el esquema declarado."""

    def __init__(self, entity_type: str, field_path: str, reason: str = "campo requerido ausente"):
        super().__init__(
            message=f"Payload invalido para '{entity_type}' en '{field_path}': {reason}",
            status_code=422,
            error_code="MALFORMED_PAYLOAD",
            details={"entity_type": entity_type, "field_path": field_path},
        )
        self.entity_type = entity_type
        self.field_path = field_path


class SignatureInvalid(AppException):
    """Firma HMAC del webhook ausente o incorrecta."""

    def __init__(self):
        super().__init__(
            message="Firma del webhook invalida",
            status_code=401,
            error_code="SIGNATURE_INVALID",
        )


class StorageConflict(AppException):
    """
    Conflicto de unicidad durante un upsert concurrente.
    Se resuelve dentro del repositorio y nunca llega al caller.
    """

    retryable = True

    def __init__(self, table: str, remote_id: str):
        super().__init__(
            message=f"Conflicto de escritura en {table} para remote_id={remote_id}",
            status_code=409,
            error_code="STORAGE_CONFLICT",
        )


class JobCancelled(AppException):
    """El job fue cancelado en un limite de pagina."""

    def __init__(self, job_id: int):
        super().__init__(
            message=f"Job {job_id} cancelado por solicitud del orquestador",
            status_code=409,
            error_code="CANCELLED",
            details={"job_id": job_id},
        )


class MetricsUnavailable(AppException):
    """El almacen de metricas no responde (solo afecta lecturas)."""

    def __init__(self, reason: str = ""):
        super().__init__(
            message="Metricas no disponibles" + (f": {reason}" if reason else ""),
            status_code=503,
            error_code="METRICS_UNAVAILABLE",
        )
