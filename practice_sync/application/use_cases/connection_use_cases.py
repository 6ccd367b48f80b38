"""
Casos de uso relacionados con conexiones (vincular, consultar, desconectar).
"""
from datetime import timedelta

from loguru import logger

from practice_sync.application.dto.connection_dto import (
    ConnectionLinkDTO,
    ConnectionResponseDTO,
    DisconnectResponseDTO,
)
from practice_sync.core.security import CredentialCipher
from practice_sync.domain.entities.connection import Connection
from practice_sync.domain.repositories.connection_repository import IConnectionRepository
from practice_sync.infrastructure.queue.job_queue import JobQueue
from practice_sync.shared.constants.sync_constants import ERROR_CODE_CONNECTION_DISABLED
from practice_sync.shared.exceptions.domain import ConnectionNotFound
from practice_sync.shared.utils.datetime_utils import utc_now


class ConnectionUseCases:
    """
    Casos de uso para el ciclo de vida de la conexion con la cuenta remota.
    Orquesta repositorio, cifrado de credenciales y cola de jobs.
    """

    def __init__(
        self,
        connection_repository: IConnectionRepository,
        queue: JobQueue,
        cipher: CredentialCipher,
        refresh_skew_seconds: int = 300,
    ):
        """
        Inicializa los casos de uso con sus dependencias.

        Args:
            connection_repository: Repositorio de conexiones
            queue: Cola de jobs (para cancelar al desconectar)
            cipher: Cifrado de credenciales en reposo
            refresh_skew_seconds: Margen para considerar un token por expirar
        """
        self.connection_repository = connection_repository
        self.queue = queue
        self.cipher = cipher
        self.refresh_skew_seconds = refresh_skew_seconds

    async def link(self, dto: ConnectionLinkDTO) -> ConnectionResponseDTO:
        """
        Vincula (o re-vincula) la cuenta remota de un usuario.

        Una conexion degradada vuelve a ACTIVE con las credenciales nuevas.
        """
        expires_at = (
            utc_now() + timedelta(seconds=dto.expires_in)
            if dto.expires_in is not None
            else None
        )
        connection = await self.connection_repository.save_credentials(
            user_id=dto.user_id,
            remote_account_id=dto.remote_account_id,
            access_token_encrypted=self.cipher.encrypt(dto.access_token),
            refresh_token_encrypted=self.cipher.encrypt(dto.refresh_token),
            token_expires_at=expires_at,
        )
        logger.success(f"Cuenta remota {dto.remote_account_id} vinculada al usuario {dto.user_id}")
        return self._to_response_dto(connection)

    async def get_connection(self, user_id: str) -> ConnectionResponseDTO:
        """
        Raises:
            ConnectionNotFound: Si el usuario no tiene conexion activa
        """
        connection = await self.connection_repository.get_active_by_user(user_id)
        if connection is None:
            raise ConnectionNotFound(user_id)
        return self._to_response_dto(connection)

    async def disconnect(self, user_id: str) -> DisconnectResponseDTO:
        """
        Desconecta la cuenta: cancela los jobs activos, borra credenciales y
        deshabilita la conexion. Las filas sincronizadas se conservan.

        Raises:
            ConnectionNotFound: Si el usuario no tiene conexion activa
        """
        connection = await self.connection_repository.get_active_by_user(user_id)
        if connection is None:
            raise ConnectionNotFound(user_id)

        cancelled = await self.queue.cancel_for_connection(
            connection.id,
            error_code=ERROR_CODE_CONNECTION_DISABLED,
        )
        await self.connection_repository.disable(connection.id)

        logger.info(f"Conexion {connection.id} del usuario {user_id} deshabilitada ({cancelled} jobs cancelados)")
        return DisconnectResponseDTO(
            user_id=str(user_id),
            connection_id=connection.id,
            cancelled_jobs=cancelled,
            message="Conexion deshabilitada",
        )

    def _to_response_dto(self, connection: Connection) -> ConnectionResponseDTO:
        """
        Convierte una entidad de dominio a DTO de respuesta (sin credenciales).
        """
        return ConnectionResponseDTO(
            id=connection.id,
            user_id=connection.user_id,
            remote_account_id=connection.remote_account_id,
            status=connection.status,
            credential_state=connection.credential_state(self.refresh_skew_seconds).value,
            token_expires_at=connection.token_expires_at,
            last_synced_at=connection.last_synced_at,
            webhook_subscriptions=connection.webhook_subscriptions,
            created_at=connection.created_at,
        )
