"""
Gestor de credenciales de las conexiones.

- Descifra el access token justo antes de cada llamada remota.
- Refresca proactivamente cuando el token esta por expirar.
- Un solo refresh a la vez por conexion: lock en proceso + compare-and-swap
  sobre credentials_version en base de datos (entre procesos).
- Si el refresh falla la conexion pasa a DEGRADED y no se vuelve a llamar
  a la API remota hasta que el usuario re-autorice.
"""
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict

from loguru import logger

from practice_sync.core.security import CredentialCipher
from practice_sync.domain.entities.connection import Connection
from practice_sync.infrastructure.database.session import SessionFactory
from practice_sync.infrastructure.external.clio.oauth_client import ClioOAuthClient, OAuthRefreshError
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.shared.constants.sync_constants import ConnectionStatus, CredentialState
from practice_sync.shared.exceptions.sync import ReauthorizationRequired
from practice_sync.shared.utils.datetime_utils import utc_now


@dataclass(frozen=True)
class AccessCredential:
    """Token en claro junto a la version de credenciales de la que salio."""

    access_token: str
    version: int


class CredentialManager:
    """Entrega access tokens validos por conexion."""

    def __init__(
        self,
        session_factory: SessionFactory,
        cipher: CredentialCipher,
        oauth_client: ClioOAuthClient,
        *,
        refresh_skew_seconds: int = 300,
    ):
        self._session_factory = session_factory
        self._cipher = cipher
        self._oauth = oauth_client
        self._skew = refresh_skew_seconds
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, connection_id: int) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[connection_id] = lock
        return lock

    async def _load(self, connection_id: int) -> Connection:
        async with self._session_factory() as session:
            connection = await ConnectionRepositoryImpl(session).get_by_id(connection_id)
        if connection is None:
            raise ReauthorizationRequired(connection_id, "conexion inexistente")
        return connection

    async def get_access_token(self, connection_id: int) -> AccessCredential:
        """
        Retorna un token utilizable para la conexion.

        Raises:
            ReauthorizationRequired: Conexion degradada/deshabilitada o refresh fallido
        """
        connection = await self._load(connection_id)
        self._ensure_callable(connection)

        state = connection.credential_state(self._skew)
        if state == CredentialState.EXPIRING:
            logger.info(f"Credenciales de la conexion {connection_id} por expirar - refresh proactivo")
            return await self.refresh(connection_id, stale_version=connection.credentials_version)

        return AccessCredential(
            access_token=self._cipher.decrypt(connection.access_token_encrypted),
            version=connection.credentials_version,
        )

    async def refresh(self, connection_id: int, stale_version: int) -> AccessCredential:
        """
        Refresca las credenciales si nadie lo hizo desde `stale_version`.

        Si otro worker (o proceso) ya refresco, se reutiliza su resultado
        en lugar de gastar el refresh token de nuevo.
        """
        async with self._lock_for(connection_id):
            connection = await self._load(connection_id)
            self._ensure_callable(connection)

            if connection.credentials_version != stale_version:
                logger.debug(f"Conexion {connection_id}: credenciales ya refrescadas por otro worker")
                return AccessCredential(
                    access_token=self._cipher.decrypt(connection.access_token_encrypted),
                    version=connection.credentials_version,
                )

            try:
                tokens = await self._oauth.refresh(
                    self._cipher.decrypt(connection.refresh_token_encrypted)
                )
            except (OAuthRefreshError, ValueError) as e:
                await self.mark_degraded(connection_id)
                raise ReauthorizationRequired(connection_id, str(e)) from e

            expires_at = (
                utc_now() + timedelta(seconds=tokens.expires_in)
                if tokens.expires_in is not None
                else None
            )
            async with self._session_factory() as session:
                repo = ConnectionRepositoryImpl(session)
                swapped = await repo.update_credentials_if_version(
                    connection_id,
                    expected_version=stale_version,
                    access_token_encrypted=self._cipher.encrypt(tokens.access_token),
                    refresh_token_encrypted=self._cipher.encrypt(tokens.refresh_token),
                    token_expires_at=expires_at,
                )
                await session.commit()

            if not swapped:
                # Otro proceso gano la carrera: su token es el vigente
                logger.info(f"Conexion {connection_id}: refresh concurrente detectado, usando credenciales guardadas")
                connection = await self._load(connection_id)
                self._ensure_callable(connection)
                return AccessCredential(
                    access_token=self._cipher.decrypt(connection.access_token_encrypted),
                    version=connection.credentials_version,
                )

            logger.success(f"Credenciales de la conexion {connection_id} refrescadas")
            return AccessCredential(access_token=tokens.access_token, version=stale_version + 1)

    def _ensure_callable(self, connection: Connection) -> None:
        if connection.status == ConnectionStatus.DEGRADED:
            raise ReauthorizationRequired(connection.id, "conexion degradada")
        if connection.status == ConnectionStatus.DISABLED or not connection.access_token_encrypted:
            raise ReauthorizationRequired(connection.id, "conexion sin credenciales")

    async def mark_degraded(self, connection_id: int, reason: str = "refresh de credenciales fallido") -> None:
        async with self._session_factory() as session:
            await ConnectionRepositoryImpl(session).set_status(connection_id, ConnectionStatus.DEGRADED)
            await session.commit()
        logger.error(f"Conexion {connection_id} marcada como DEGRADED: {reason}")
