"""
Excepciones relacionadas con la logica de dominio.
"""
from typing import Any

from practice_sync.shared.exceptions.base import AppException


class DomainException(AppException):
    """Excepcion base para errores de dominio."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class EntityNotFoundException(DomainException):
    """Excepcion cuando no se encuentra una entidad."""

    def __init__(self, entity_name: str, entity_id: Any):
        super().__init__(
            message=f"{entity_name} con ID {entity_id} no encontrado",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )
        self.status_code = 404


class ValidationException(DomainException):
    """Excepcion para errores de validacion."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details
        )


class ConnectionNotFound(DomainException):
    """No existe una conexion activa para el usuario indicado."""

    def __init__(self, user_id: Any):
        super().__init__(
            message=f"No existe una conexion activa para el usuario '{user_id}'",
            error_code="CONNECTION_NOT_FOUND",
            details={"user_id": str(user_id)}
        )
        self.status_code = 404


class UnsupportedEntityType(DomainException):
    """El tipo de entidad no tiene handler registrado."""

    def __init__(self, entity_type: Any):
        super().__init__(
            message=f"Tipo de entidad no soportado: {entity_type}",
            error_code="UNSUPPORTED_ENTITY_TYPE",
            details={"entity_type": str(entity_type)}
        )
