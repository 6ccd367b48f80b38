"""
Cliente de la API REST de Clio (v4) sobre httpx.AsyncClient.

Requisitos cubiertos:
- paginacion por cursor (page_token de meta.paging.next)
- rate limit local por conexion (token bucket)
- backoff exponencial con jitter para 429, 5xx, timeouts y errores de red
- Retry-After respetado cuando viene en la respuesta
- 401: un refresh de credenciales y un reintento; si vuelve a fallar la
  conexion queda DEGRADED
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
from loguru import logger

from practice_sync.domain.entities.connection import Connection
from practice_sync.shared.constants.sync_constants import EntityType, WebhookAction
from practice_sync.shared.exceptions.base import AppException
from practice_sync.shared.exceptions.sync import (
    MalformedPayload,
    RateLimitExceeded,
    ReauthorizationRequired,
    TransientRemoteError,
)
from practice_sync.shared.utils.backoff import BackoffPolicy
from practice_sync.shared.utils.datetime_utils import to_iso_z

from .credentials import AccessCredential, CredentialManager
from .entity_mappings import get_entity_mapping
from .rate_limiter import TokenBucketRateLimiter
from .types import RemotePage, decode_json, extract_page_token


class ClioApiError(AppException):
    """Respuesta 4xx no recuperable de la API remota (config o request invalido)."""

    def __init__(self, message: str, status: int):
        super().__init__(
            message=message,
            status_code=502,
            error_code="REMOTE_API_ERROR",
            details={"remote_status": status},
        )
        self.remote_status = status


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class ClioClient:
    """
    Cliente HTTP de Clio para una o varias conexiones.

    Importante:
    - No transforma registros: eso lo decide el transformador por entidad.
    - No decide reintentos a nivel de job: agota sus propios reintentos por
      request y luego levanta un error clasificado (transitorio o no).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credentials: CredentialManager,
        rate_limiter: TokenBucketRateLimiter,
        *,
        base_url: str = "https://app.clio.com/api/v4",
        page_size: int = 200,
        timeout_s: float = 30.0,
        max_retries: int = 5,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._http = http_client
        self._credentials = credentials
        self._rate_limiter = rate_limiter
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff = backoff or BackoffPolicy(base_delay=1.0, max_delay=30.0)
        self._sleep = sleep

    async def fetch_page(
        self,
        entity_type: EntityType,
        connection: Connection,
        cursor: Optional[str] = None,
        updated_since: Optional[datetime] = None,
    ) -> RemotePage:
        """
        Trae una pagina de registros ordenados por id ascendente.

        Args:
            entity_type: Tipo de entidad a listar
            connection: Conexion cuyas credenciales se usan
            cursor: page_token de la pagina anterior (None = primera pagina)
            updated_since: Filtro incremental (None = sync completo)

        Returns:
            RemotePage: registros crudos y el cursor siguiente (None si termino)
        """
        mapping = get_entity_mapping(entity_type)
        params: dict[str, Any] = {
            "limit": self._page_size,
            "order": "id(asc)",
            "fields": mapping.remote_fields,
        }
        if updated_since is not None:
            params["updated_since"] = to_iso_z(updated_since)
        if cursor:
            params["page_token"] = cursor

        payload = await self._request("GET", f"/{mapping.endpoint}.json", connection, params=params)

        records = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(records, list):
            raise MalformedPayload(mapping.entity_type.value, "data", reason="se esperaba una lista")

        next_url = ((payload.get("meta") or {}).get("paging") or {}).get("next")
        next_cursor = extract_page_token(next_url)
        if next_url and not next_cursor:
            raise MalformedPayload(mapping.entity_type.value, "meta.paging.next", reason="URL sin page_token")

        logger.debug(
            f"Pagina de {mapping.endpoint} para conexion {connection.id}: "
            f"{len(records)} registros, siguiente={'si' if next_cursor else 'no'}"
        )
        return RemotePage(records=records, next_cursor=next_cursor)

    async def fetch_single(
        self,
        entity_type: EntityType,
        remote_id: str,
        connection: Connection,
    ) -> Optional[dict[str, Any]]:
        """
        Trae un registro por id.

        Returns:
            El registro crudo, o None si ya no existe en Clio (404)
        """
        mapping = get_entity_mapping(entity_type)
        try:
            payload = await self._request(
                "GET",
                f"/{mapping.endpoint}/{remote_id}.json",
                connection,
                params={"fields": mapping.remote_fields},
            )
        except ClioApiError as e:
            if e.remote_status == 404:
                return None
            raise

        record = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(record, dict):
            raise MalformedPayload(mapping.entity_type.value, "data", reason="se esperaba un objeto")
        return record

    async def register_webhook(
        self,
        entity_type: EntityType,
        callback_url: str,
        connection: Connection,
    ) -> str:
        """
        Crea una suscripcion de webhooks para el modelo de la entidad.

        Returns:
            str: ID de la suscripcion en Clio
        """
        mapping = get_entity_mapping(entity_type)
        body = {
            "data": {
                "url": callback_url,
                "fields": "id,updated_at",
                "model": mapping.webhook_model,
                "events": [action.value for action in WebhookAction],
            }
        }
        payload = await self._request("POST", "/webhooks.json", connection, json=body)

        subscription = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(subscription, dict) or subscription.get("id") is None:
            raise MalformedPayload("webhooks", "data.id")
        return str(subscription["id"])

    async def _request(
        self,
        method: str,
        path: str,
        connection: Connection,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Request HTTP con backoff.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter.
        - 5xx / timeout / error de red: exponencial con jitter.
        - 401: un refresh de credenciales y se repite el request.
        - otros 4xx: error inmediato (no reintentable).
        """
        credential: AccessCredential = await self._credentials.get_access_token(connection.id)
        refreshed = False
        attempt = 0
        url = f"{self._base_url}{path}"

        while True:
            await self._rate_limiter.acquire(connection.id)
            try:
                response = await self._http.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={
                        "Authorization": f"Bearer {credential.access_token}",
                        "Accept": "application/json",
                    },
                    timeout=self._timeout_s,
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt >= self._max_retries:
                    raise TransientRemoteError(
                        f"Clio no respondio tras {attempt + 1} intentos: {e.__class__.__name__}"
                    ) from e
                delay = self._backoff.delay(attempt)
                logger.warning(
                    f"{method} {path}: {e.__class__.__name__}, reintento {attempt + 1}/{self._max_retries} en {delay:.2f}s"
                )
                await self._sleep(delay)
                attempt += 1
                continue

            status = response.status_code

            if 200 <= status < 300:
                return decode_json(response.content) if response.content else {}

            if status == 401:
                if refreshed:
                    await self._credentials.mark_degraded(connection.id, "401 persistente tras refresh")
                    raise ReauthorizationRequired(connection.id, "token rechazado tras refresh")
                logger.info(f"{method} {path}: 401 para conexion {connection.id}, refrescando credenciales")
                credential = await self._credentials.refresh(connection.id, stale_version=credential.version)
                refreshed = True
                continue

            if status == 429 or 500 <= status < 600:
                if attempt >= self._max_retries:
                    if status == 429:
                        raise RateLimitExceeded(
                            f"Clio siguio respondiendo 429 tras {attempt + 1} intentos",
                            attempts=attempt + 1,
                        )
                    raise TransientRemoteError(
                        f"Clio respondio {status} tras {attempt + 1} intentos",
                        status=status,
                    )
                retry_after = _retry_after_seconds(response) if status == 429 else None
                if retry_after is not None:
                    # Retry-After tambien respeta el techo del backoff
                    delay = min(retry_after, self._backoff.max_delay)
                else:
                    delay = self._backoff.delay(attempt)
                logger.warning(
                    f"{method} {path}: HTTP {status}, reintento {attempt + 1}/{self._max_retries} en {delay:.2f}s"
                )
                await self._sleep(delay)
                attempt += 1
                continue

            raise ClioApiError(f"Clio request fallo {status}: {response.text[:500]}", status=status)
