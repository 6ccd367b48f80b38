"""
Implementacion del repositorio de entidades remotas con UPSERT.

Cada tipo de entidad tiene su tabla tipada (clio_*) con unicidad en
(connection_id, remote_id). Reglas del UPSERT:
- INSERT si la clave no existe
- UPDATE si existe y el registro entrante no es mas viejo que el guardado
  (remote_updated_at), de modo que un webhook atrasado no pisa datos nuevos
- Un registro que vuelve a aparecer en la API remota deja de estar borrado
"""
from typing import Dict, Iterable, Optional, Type

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from practice_sync.domain.entities.remote_entity import RemoteEntity, TransformedEntity
from practice_sync.domain.repositories.entity_repository import IEntityRepository
from practice_sync.infrastructure.database.dialect import dialect_name, insert_for
from practice_sync.infrastructure.database.models import (
    ActivityModel,
    ContactModel,
    MatterModel,
    TaskModel,
    UserModel,
)
from practice_sync.shared.constants.sync_constants import EntityType
from practice_sync.shared.exceptions.domain import UnsupportedEntityType
from practice_sync.shared.exceptions.sync import StorageConflict
from practice_sync.shared.utils.datetime_utils import ensure_utc, utc_now


ENTITY_MODELS: Dict[EntityType, Type] = {
    EntityType.MATTER: MatterModel,
    EntityType.CONTACT: ContactModel,
    EntityType.ACTIVITY: ActivityModel,
    EntityType.TASK: TaskModel,
    EntityType.USER: UserModel,
}

# Columnas tecnicas que no forman parte de `values`
_TECHNICAL_COLUMNS = frozenset({
    "id",
    "connection_id",
    "remote_id",
    "remote_updated_at",
    "synced_at",
    "is_deleted",
    "deleted_at",
})

MAX_CONFLICT_RETRIES = 3


def get_entity_model(entity_type: EntityType):
    try:
        return ENTITY_MODELS[EntityType(entity_type)]
    except (KeyError, ValueError):
        raise UnsupportedEntityType(entity_type)


class EntityRepositoryImpl(IEntityRepository):
    """Repositorio de proyecciones remotas sobre SQLAlchemy (PostgreSQL/SQLite)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, entity: TransformedEntity) -> RemoteEntity:
        await self._upsert_with_retry(entity)
        stored = await self.get(entity.entity_type, entity.connection_id, entity.remote_id)
        if stored is None:
            raise StorageConflict(get_entity_model(entity.entity_type).__tablename__, entity.remote_id)
        return stored

    async def upsert_many(self, entities: Iterable[TransformedEntity]) -> int:
        processed = 0
        for entity in entities:
            await self._upsert_with_retry(entity)
            processed += 1
        return processed

    async def _upsert_with_retry(self, entity: TransformedEntity) -> None:
        """
        Ejecuta el UPSERT (dentro de un savepoint en PostgreSQL).

        ON CONFLICT resuelve la carrera sobre la clave natural; si aun asi
        aparece un IntegrityError (p.ej. dos transacciones insertando a la vez
        antes del commit) se reintenta y el segundo intento cae en el UPDATE.
        """
        model = get_entity_model(entity.entity_type)
        last_error: Optional[IntegrityError] = None

        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            try:
                if dialect_name(self.session) == "postgresql":
                    # En PostgreSQL un error aborta la transaccion entera: savepoint
                    async with self.session.begin_nested():
                        await self.session.execute(self._build_upsert(model, entity))
                else:
                    await self.session.execute(self._build_upsert(model, entity))
                return
            except IntegrityError as e:
                last_error = e
                logger.warning(
                    f"Conflicto de unicidad en {model.__tablename__} "
                    f"remote_id={entity.remote_id} (intento {attempt}/{MAX_CONFLICT_RETRIES})"
                )

        raise StorageConflict(model.__tablename__, entity.remote_id) from last_error

    def _build_upsert(self, model, entity: TransformedEntity):
        table = model.__table__
        now = utc_now()

        row = {
            column: value
            for column, value in entity.values.items()
            if column in table.c and column not in _TECHNICAL_COLUMNS
        }
        row.update({
            "connection_id": entity.connection_id,
            "remote_id": str(entity.remote_id),
            "remote_updated_at": ensure_utc(entity.remote_updated_at),
            "synced_at": now,
            "is_deleted": False,
            "deleted_at": None,
        })

        insert_stmt = insert_for(self.session, table).values(**row)
        update_columns = {
            column: insert_stmt.excluded[column]
            for column in row
            if column not in ("connection_id", "remote_id")
        }

        return insert_stmt.on_conflict_do_update(
            index_elements=[table.c.connection_id, table.c.remote_id],
            set_=update_columns,
            where=or_(
                insert_stmt.excluded.remote_updated_at.is_(None),
                table.c.remote_updated_at.is_(None),
                insert_stmt.excluded.remote_updated_at >= table.c.remote_updated_at,
            ),
        )

    async def soft_delete(self, entity_type: EntityType, connection_id: int, remote_id: str) -> bool:
        model = get_entity_model(entity_type)
        now = utc_now()
        result = await self.session.execute(
            update(model)
            .where(model.connection_id == connection_id)
            .where(model.remote_id == str(remote_id))
            .values(is_deleted=True, deleted_at=now, synced_at=now)
            .execution_options(synchronize_session=False)
        )
        deleted = (result.rowcount or 0) > 0
        if not deleted:
            logger.info(f"Soft delete sin fila local: {model.__tablename__} remote_id={remote_id}")
        return deleted

    async def get(self, entity_type: EntityType, connection_id: int, remote_id: str) -> Optional[RemoteEntity]:
        model = get_entity_model(entity_type)
        result = await self.session.execute(
            select(model)
            .where(model.connection_id == connection_id)
            .where(model.remote_id == str(remote_id))
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._to_entity(EntityType(entity_type), row) if row else None

    async def count(self, entity_type: EntityType, connection_id: int, include_deleted: bool = False) -> int:
        model = get_entity_model(entity_type)
        stmt = select(func.count()).select_from(model).where(model.connection_id == connection_id)
        if not include_deleted:
            stmt = stmt.where(model.is_deleted.is_(False))
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    def _to_entity(entity_type: EntityType, row) -> RemoteEntity:
        values = {
            column.name: getattr(row, column.name)
            for column in row.__table__.columns
            if column.name not in _TECHNICAL_COLUMNS
        }
        if "remote_created_at" in values:
            values["remote_created_at"] = ensure_utc(values["remote_created_at"])
        return RemoteEntity(
            id=row.id,
            entity_type=entity_type,
            connection_id=row.connection_id,
            remote_id=row.remote_id,
            values=values,
            remote_updated_at=ensure_utc(row.remote_updated_at),
            synced_at=ensure_utc(row.synced_at),
            is_deleted=bool(row.is_deleted),
            deleted_at=ensure_utc(row.deleted_at),
        )
