"""
Interfaz del repositorio de conexiones.
Define el contrato que debe cumplir cualquier implementacion.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from practice_sync.domain.entities.connection import Connection
from practice_sync.shared.constants.sync_constants import ConnectionStatus, EntityType


class IConnectionRepository(ABC):
    """
    Interfaz del repositorio de conexiones.
    Define las operaciones de persistencia para conexiones y marcas de agua.
    """

    @abstractmethod
    async def get_by_id(self, connection_id: int) -> Optional[Connection]:
        """
        Obtiene una conexion por su ID.

        Args:
            connection_id: ID local de la conexion

        Returns:
            Optional[Connection]: Conexion encontrada o None
        """
        pass

    @abstractmethod
    async def get_active_by_user(self, user_id: str) -> Optional[Connection]:
        """
        Obtiene la conexion no deshabilitada de un usuario.

        Args:
            user_id: ID del usuario local

        Returns:
            Optional[Connection]: Conexion activa o degradada, o None
        """
        pass

    @abstractmethod
    async def save_credentials(
        self,
        *,
        user_id: str,
        remote_account_id: str,
        access_token_encrypted: str,
        refresh_token_encrypted: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Connection:
        """
        Crea o reactiva la conexion de un usuario tras un intercambio OAuth.

        Returns:
            Connection: Conexion activa con las credenciales nuevas
        """
        pass

    @abstractmethod
    async def update_credentials_if_version(
        self,
        connection_id: int,
        *,
        expected_version: int,
        access_token_encrypted: str,
        refresh_token_encrypted: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> bool:
        """
        Compare-and-swap de credenciales tras un refresh.

        Returns:
            bool: False si otro proceso ya refresco (version distinta)
        """
        pass

    @abstractmethod
    async def set_status(self, connection_id: int, status: ConnectionStatus) -> None:
        """Cambia el estado de la conexion."""
        pass

    @abstractmethod
    async def disable(self, connection_id: int) -> None:
        """Soft-disable: borra credenciales y marca la conexion como deshabilitada."""
        pass

    @abstractmethod
    async def set_webhook_subscriptions(self, connection_id: int, subscriptions: Dict[str, str]) -> None:
        """Guarda los IDs de suscripcion de webhooks por tipo de entidad."""
        pass

    @abstractmethod
    async def get_watermark(self, connection_id: int, entity_type: EntityType) -> Optional[datetime]:
        """Retorna la marca de agua del tipo de entidad, o None si nunca se sincronizo."""
        pass

    @abstractmethod
    async def advance_watermark(self, connection_id: int, entity_type: EntityType, synced_at: datetime) -> None:
        """
        Avanza la marca de agua (nunca retrocede) y el last_synced_at de la conexion.
        """
        pass
