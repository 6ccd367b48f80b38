"""
Interfaz del repositorio de entidades remotas (upsert idempotente).
"""
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from practice_sync.domain.entities.remote_entity import RemoteEntity, TransformedEntity
from practice_sync.shared.constants.sync_constants import EntityType


class IEntityRepository(ABC):
    """
    Persistencia de proyecciones remotas, con clave natural
    (connection_id, remote_id).
    """

    @abstractmethod
    async def upsert(self, entity: TransformedEntity) -> RemoteEntity:
        """
        Inserta si no existe; si existe sobreescribe los campos y actualiza
        synced_at. Seguro ante invocaciones concurrentes sobre la misma clave.

        Returns:
            RemoteEntity: Fila almacenada
        """
        pass

    @abstractmethod
    async def upsert_many(self, entities: Iterable[TransformedEntity]) -> int:
        """
        Upsert de una pagina completa.

        Returns:
            int: Numero de entidades procesadas
        """
        pass

    @abstractmethod
    async def soft_delete(self, entity_type: EntityType, connection_id: int, remote_id: str) -> bool:
        """
        Marca la entidad como borrada (is_deleted) sin eliminar la fila.

        Returns:
            bool: True si existia una fila para marcar
        """
        pass

    @abstractmethod
    async def get(self, entity_type: EntityType, connection_id: int, remote_id: str) -> Optional[RemoteEntity]:
        """Obtiene una entidad por su clave natural."""
        pass

    @abstractmethod
    async def count(self, entity_type: EntityType, connection_id: int, include_deleted: bool = False) -> int:
        """Cuenta las filas de un tipo de entidad para una conexion."""
        pass
