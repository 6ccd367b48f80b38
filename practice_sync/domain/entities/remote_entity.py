"""
Entidad de dominio: RemoteEntity (proyeccion local de un registro remoto).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from practice_sync.shared.constants.sync_constants import EntityType


@dataclass(frozen=True)
class TransformedEntity:
    """
    Resultado del transformador, listo para upsert.

    remote_id es la clave natural (unica por conexion) y se maneja como
    string para no perder precision con identificadores grandes.
    """

    entity_type: EntityType
    connection_id: int
    remote_id: str
    values: Dict[str, Any] = field(default_factory=dict)
    remote_updated_at: Optional[datetime] = None


@dataclass
class RemoteEntity:
    """Fila almacenada (con su surrogate key local)."""

    id: int
    entity_type: EntityType
    connection_id: int
    remote_id: str
    values: Dict[str, Any] = field(default_factory=dict)
    remote_updated_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
