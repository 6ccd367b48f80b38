"""
Implementacion del repositorio de conexiones usando SQLAlchemy.
"""
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from practice_sync.domain.entities.connection import Connection
from practice_sync.domain.repositories.connection_repository import IConnectionRepository
from practice_sync.infrastructure.database.dialect import insert_for
from practice_sync.infrastructure.database.models import ConnectionModel, SyncWatermarkModel
from practice_sync.shared.constants.sync_constants import ConnectionStatus, EntityType
from practice_sync.shared.utils.datetime_utils import ensure_utc, utc_now


class ConnectionRepositoryImpl(IConnectionRepository):
    """Implementacion del repositorio de conexiones con SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        """
        Inicializa el repositorio con una sesion de base de datos.
        El caller controla commit/rollback.

        Args:
            session: Sesion de SQLAlchemy
        """
        self.session = session

    async def get_by_id(self, connection_id: int) -> Optional[Connection]:
        result = await self.session.execute(
            select(ConnectionModel).where(ConnectionModel.id == connection_id)
        )
        db_connection = result.scalar_one_or_none()
        return self._to_entity(db_connection) if db_connection else None

    async def get_active_by_user(self, user_id: str) -> Optional[Connection]:
        result = await self.session.execute(
            select(ConnectionModel)
            .where(ConnectionModel.user_id == str(user_id))
            .where(ConnectionModel.status != ConnectionStatus.DISABLED)
            .order_by(ConnectionModel.id.desc())
        )
        db_connection = result.scalars().first()
        return self._to_entity(db_connection) if db_connection else None

    async def save_credentials(
        self,
        *,
        user_id: str,
        remote_account_id: str,
        access_token_encrypted: str,
        refresh_token_encrypted: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Connection:
        # Reusar la ultima conexion del usuario (nunca se borran filas)
        result = await self.session.execute(
            select(ConnectionModel)
            .where(ConnectionModel.user_id == str(user_id))
            .order_by(ConnectionModel.id.desc())
        )
        db_connection = result.scalars().first()

        if db_connection is None:
            db_connection = ConnectionModel(
                user_id=str(user_id),
                webhook_subscriptions={},
                credentials_version=0,
            )
            self.session.add(db_connection)
        elif db_connection.remote_account_id != str(remote_account_id):
            # Otra cuenta remota: las suscripciones previas ya no aplican
            db_connection.webhook_subscriptions = {}

        db_connection.remote_account_id = str(remote_account_id)
        db_connection.access_token_encrypted = access_token_encrypted
        db_connection.refresh_token_encrypted = refresh_token_encrypted
        db_connection.token_expires_at = token_expires_at
        db_connection.credentials_version = (db_connection.credentials_version or 0) + 1
        db_connection.status = ConnectionStatus.ACTIVE
        db_connection.updated_at = utc_now()

        await self.session.flush()
        await self.session.refresh(db_connection)
        return self._to_entity(db_connection)

    async def update_credentials_if_version(
        self,
        connection_id: int,
        *,
        expected_version: int,
        access_token_encrypted: str,
        refresh_token_encrypted: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> bool:
        result = await self.session.execute(
            update(ConnectionModel)
            .where(ConnectionModel.id == connection_id)
            .where(ConnectionModel.credentials_version == expected_version)
            .values(
                access_token_encrypted=access_token_encrypted,
                refresh_token_encrypted=refresh_token_encrypted,
                token_expires_at=token_expires_at,
                credentials_version=expected_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def set_status(self, connection_id: int, status: ConnectionStatus) -> None:
        await self.session.execute(
            update(ConnectionModel)
            .where(ConnectionModel.id == connection_id)
            .values(status=status, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def disable(self, connection_id: int) -> None:
        await self.session.execute(
            update(ConnectionModel)
            .where(ConnectionModel.id == connection_id)
            .values(
                status=ConnectionStatus.DISABLED,
                access_token_encrypted=None,
                refresh_token_encrypted=None,
                token_expires_at=None,
                webhook_subscriptions={},
                credentials_version=ConnectionModel.credentials_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

    async def set_webhook_subscriptions(self, connection_id: int, subscriptions: Dict[str, str]) -> None:
        await self.session.execute(
            update(ConnectionModel)
            .where(ConnectionModel.id == connection_id)
            .values(webhook_subscriptions=dict(subscriptions), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def get_watermark(self, connection_id: int, entity_type: EntityType) -> Optional[datetime]:
        result = await self.session.execute(
            select(SyncWatermarkModel.synced_at)
            .where(SyncWatermarkModel.connection_id == connection_id)
            .where(SyncWatermarkModel.entity_type == EntityType(entity_type).value)
        )
        return ensure_utc(result.scalar_one_or_none())

    async def advance_watermark(self, connection_id: int, entity_type: EntityType, synced_at: datetime) -> None:
        """
        UPSERT de la marca de agua con guardia "solo hacia adelante", para que
        un job lento que termina tarde no retroceda el cursor de otro mas nuevo.
        """
        table = SyncWatermarkModel.__table__
        insert_stmt = insert_for(self.session, table).values(
            connection_id=connection_id,
            entity_type=EntityType(entity_type).value,
            synced_at=synced_at,
        )
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[table.c.connection_id, table.c.entity_type],
            set_={"synced_at": insert_stmt.excluded.synced_at},
            where=insert_stmt.excluded.synced_at > table.c.synced_at,
        )
        await self.session.execute(stmt)

        await self.session.execute(
            update(ConnectionModel)
            .where(ConnectionModel.id == connection_id)
            .where(or_(
                ConnectionModel.last_synced_at.is_(None),
                ConnectionModel.last_synced_at < synced_at,
            ))
            .values(last_synced_at=synced_at, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _to_entity(db_connection: ConnectionModel) -> Connection:
        """
        Convierte un modelo de base de datos a entidad de dominio.

        Args:
            db_connection: Modelo de SQLAlchemy

        Returns:
            Connection: Entidad de dominio
        """
        return Connection(
            id=db_connection.id,
            user_id=db_connection.user_id,
            remote_account_id=db_connection.remote_account_id,
            access_token_encrypted=db_connection.access_token_encrypted,
            refresh_token_encrypted=db_connection.refresh_token_encrypted,
            token_expires_at=ensure_utc(db_connection.token_expires_at),
            credentials_version=db_connection.credentials_version or 0,
            status=ConnectionStatus(db_connection.status),
            last_synced_at=ensure_utc(db_connection.last_synced_at),
            webhook_subscriptions=dict(db_connection.webhook_subscriptions or {}),
            created_at=ensure_utc(db_connection.created_at),
            updated_at=ensure_utc(db_connection.updated_at),
        )
