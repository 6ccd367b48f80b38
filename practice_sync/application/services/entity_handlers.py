"""
Handlers por tipo de entidad.

Cada handler agrupa las capacidades que necesita el runner de jobs:
traer paginas o registros sueltos, transformar y persistir. El runner
elige el handler por tipo de entidad en el registro, sin ramas por tipo.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional

from practice_sync.domain.entities.connection import Connection
from practice_sync.domain.entities.remote_entity import TransformedEntity
from practice_sync.domain.repositories.entity_repository import IEntityRepository
from practice_sync.infrastructure.external.clio.clio_client import ClioClient
from practice_sync.infrastructure.external.clio.transformer import transform_record
from practice_sync.infrastructure.external.clio.types import RemotePage
from practice_sync.shared.constants.sync_constants import EntityType
from practice_sync.shared.exceptions.domain import UnsupportedEntityType


Transformer = Callable[..., TransformedEntity]


class EntityHandler:
    """Capacidades {fetch_page, fetch_single, transform, upsert, soft_delete} de un tipo."""

    def __init__(
        self,
        entity_type: EntityType,
        client: ClioClient,
        transformer: Transformer = transform_record,
    ):
        self.entity_type = EntityType(entity_type)
        self._client = client
        self._transformer = transformer

    async def fetch_page(self, connection: Connection, cursor: Optional[str], updated_since) -> RemotePage:
        return await self._client.fetch_page(
            self.entity_type,
            connection,
            cursor=cursor,
            updated_since=updated_since,
        )

    async def fetch_single(self, connection: Connection, remote_id: str) -> Optional[Dict[str, Any]]:
        return await self._client.fetch_single(self.entity_type, remote_id, connection)

    def transform(self, connection_id: int, payload: Dict[str, Any]) -> TransformedEntity:
        return self._transformer(self.entity_type, payload, connection_id=connection_id)

    def transform_page(self, connection_id: int, records: Iterable[Dict[str, Any]]) -> List[TransformedEntity]:
        """Transforma una pagina completa; un registro invalido invalida la pagina."""
        return [self.transform(connection_id, record) for record in records]

    async def upsert(self, repository: IEntityRepository, entities: Iterable[TransformedEntity]) -> int:
        return await repository.upsert_many(entities)

    async def soft_delete(self, repository: IEntityRepository, connection_id: int, remote_id: str) -> bool:
        return await repository.soft_delete(self.entity_type, connection_id, remote_id)


class EntityHandlerRegistry:
    """Registro tipo de entidad -> handler."""

    def __init__(self):
        self._handlers: Dict[EntityType, EntityHandler] = {}

    def register(self, handler: EntityHandler) -> None:
        self._handlers[handler.entity_type] = handler

    def get(self, entity_type: EntityType) -> EntityHandler:
        """
        Raises:
            UnsupportedEntityType: Si no hay handler para el tipo
        """
        try:
            return self._handlers[EntityType(entity_type)]
        except (KeyError, ValueError):
            raise UnsupportedEntityType(entity_type)

    def entity_types(self) -> List[EntityType]:
        return list(self._handlers)

    @classmethod
    def with_defaults(cls, client: ClioClient) -> "EntityHandlerRegistry":
        """Registro con un handler por cada tipo de entidad soportado."""
        registry = cls()
        for entity_type in EntityType:
            registry.register(EntityHandler(entity_type, client))
        return registry
