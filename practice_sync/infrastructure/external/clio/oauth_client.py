"""
Cliente del endpoint OAuth de Clio (solo refresh de tokens).

El intercambio inicial del authorization code lo hace el servicio de
autenticacion; este motor recibe los tokens ya emitidos (POST /connections).
"""
from typing import Optional

import httpx
from loguru import logger

from practice_sync.infrastructure.external.clio.types import OAuthTokens


class OAuthRefreshError(RuntimeError):
    """El proveedor rechazo el refresh o respondio algo inutilizable."""


class ClioOAuthClient:
    """Refresca access tokens con grant_type=refresh_token."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout_s: float = 30.0,
    ):
        self._http = http_client
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout_s = timeout_s

    async def refresh(self, refresh_token: Optional[str]) -> OAuthTokens:
        """
        Solicita un par de tokens nuevo.

        Args:
            refresh_token: Refresh token vigente de la conexion

        Returns:
            OAuthTokens: Tokens emitidos (Clio puede no rotar el refresh token)

        Raises:
            OAuthRefreshError: Si no hay refresh token, la red falla o el proveedor rechaza
        """
        if not refresh_token:
            raise OAuthRefreshError("La conexion no tiene refresh token")

        try:
            response = await self._http.post(
                self._token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
                timeout=self._timeout_s,
            )
        except httpx.HTTPError as e:
            raise OAuthRefreshError(f"Error de red durante el refresh: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Refresh OAuth rechazado: HTTP {response.status_code}")
            raise OAuthRefreshError(f"Refresh rechazado con HTTP {response.status_code}")

        try:
            payload = response.json()
            access_token = payload["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise OAuthRefreshError("Respuesta de refresh sin access_token") from e

        expires_in = payload.get("expires_in")
        return OAuthTokens(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_in=int(expires_in) if expires_in is not None else None,
        )
