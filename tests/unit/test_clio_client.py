"""
Tests del cliente de la API de Clio.

La API se simula con httpx.MockTransport (tests/support.FakeClio) y los
sleeps del backoff se registran en lugar de esperar.
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from practice_sync.infrastructure.external.clio.clio_client import ClioApiError
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.shared.constants.sync_constants import ConnectionStatus, EntityType
from practice_sync.shared.exceptions.sync import (
    RateLimitExceeded,
    ReauthorizationRequired,
    TransientRemoteError,
)
from tests.support import clio_page, matter_payload, token_response


MATTERS = "/api/v4/matters.json"
TOKEN = "/oauth/token"


async def _load_connection(engine, connection_id):
    async with engine.session_factory() as session:
        return await ConnectionRepositoryImpl(session).get_by_id(connection_id)


class TestFetchPage:
    """Paginacion por cursor y parametros del listado."""

    @pytest.mark.asyncio
    async def test_first_page_params(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, clio_page([matter_payload()], next_token="p2"))

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert len(page.records) == 1
        assert page.next_cursor == "p2"
        assert page.done is False
        request = fake_clio.calls("GET", MATTERS)[0]
        assert request.url.params["order"] == "id(asc)"
        assert request.url.params["limit"] == "200"
        assert "client{id}" in request.url.params["fields"]
        assert "page_token" not in request.url.params
        assert "updated_since" not in request.url.params
        assert request.headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_cursor_and_updated_since(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, clio_page([]))

        page = await engine.clio.fetch_page(
            EntityType.MATTER,
            connection,
            cursor="p2",
            updated_since=datetime(2024, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc),
        )

        assert page.done is True
        request = fake_clio.calls("GET", MATTERS)[0]
        assert request.url.params["page_token"] == "p2"
        assert request.url.params["updated_since"] == "2024-03-01T10:00:00Z"

    @pytest.mark.asyncio
    async def test_big_ids_survive_the_wire(self, engine, connection, fake_clio):
        raw = b'{"data": [{"id": 98765432109876543210}], "meta": {"paging": {}}}'
        fake_clio.add("GET", MATTERS, httpx.Response(200, content=raw))

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert page.records[0]["id"] == 98765432109876543210


class TestRetries:
    """Backoff ante 429, 5xx y errores de red."""

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self, engine, connection, fake_clio, recorded_sleeps):
        fake_clio.add("GET", MATTERS, httpx.Response(429))

        with pytest.raises(RateLimitExceeded) as exc_info:
            await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert exc_info.value.attempts == 6
        assert exc_info.value.retryable is True
        assert len(fake_clio.calls("GET", MATTERS)) == 6
        assert recorded_sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]

    @pytest.mark.asyncio
    async def test_retry_after_is_respected(self, engine, connection, fake_clio, recorded_sleeps):
        fake_clio.add(
            "GET",
            MATTERS,
            httpx.Response(429, headers={"Retry-After": "7"}),
            clio_page([matter_payload()]),
        )

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert len(page.records) == 1
        assert recorded_sleeps == [7.0]

    @pytest.mark.asyncio
    async def test_retry_after_is_capped_by_max_backoff(self, engine, connection, fake_clio, recorded_sleeps):
        """Un Retry-After enorme no duerme mas que CLIO_BACKOFF_MAX_SECONDS."""
        fake_clio.add(
            "GET",
            MATTERS,
            httpx.Response(429, headers={"Retry-After": "86400"}),
            clio_page([matter_payload()]),
        )

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert len(page.records) == 1
        assert recorded_sleeps == [engine.config.CLIO_BACKOFF_MAX_SECONDS]

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, engine, connection, fake_clio, recorded_sleeps):
        fake_clio.add("GET", MATTERS, httpx.Response(503), clio_page([matter_payload()]))

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert len(page.records) == 1
        assert recorded_sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_server_error_exhausted_is_transient(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, httpx.Response(502))

        with pytest.raises(TransientRemoteError) as exc_info:
            await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert exc_info.value.remote_status == 502
        assert not isinstance(exc_info.value, RateLimitExceeded)

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, engine, connection, fake_clio, recorded_sleeps):
        def timeout(request):
            raise httpx.ConnectTimeout("timeout", request=request)

        fake_clio.add("GET", MATTERS, timeout, clio_page([]))

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert page.records == []
        assert recorded_sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_other_client_errors_are_not_retried(self, engine, connection, fake_clio, recorded_sleeps):
        fake_clio.add("GET", MATTERS, httpx.Response(400, json={"error": "bad fields"}))

        with pytest.raises(ClioApiError) as exc_info:
            await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert exc_info.value.remote_status == 400
        assert exc_info.value.retryable is False
        assert len(fake_clio.calls("GET", MATTERS)) == 1
        assert recorded_sleeps == []


class TestAuthorization:
    """Refresh de credenciales ante 401."""

    @pytest.mark.asyncio
    async def test_unauthorized_refreshes_once(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, httpx.Response(401), clio_page([matter_payload()]))
        fake_clio.add("POST", TOKEN, token_response())

        page = await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert len(page.records) == 1
        calls = fake_clio.calls("GET", MATTERS)
        assert calls[0].headers["Authorization"] == "Bearer access-1"
        assert calls[1].headers["Authorization"] == "Bearer access-2"
        assert len(fake_clio.calls("POST", TOKEN)) == 1

        stored = await _load_connection(engine, connection.id)
        assert stored.credentials_version == connection.credentials_version + 1
        assert engine.cipher.decrypt(stored.access_token_encrypted) == "access-2"
        assert engine.cipher.decrypt(stored.refresh_token_encrypted) == "refresh-2"

    @pytest.mark.asyncio
    async def test_persistent_unauthorized_degrades_connection(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, httpx.Response(401))
        fake_clio.add("POST", TOKEN, token_response())

        with pytest.raises(ReauthorizationRequired):
            await engine.clio.fetch_page(EntityType.MATTER, connection)

        stored = await _load_connection(engine, connection.id)
        assert stored.status == ConnectionStatus.DEGRADED

        # No mas llamadas remotas hasta re-autorizar
        requests_before = len(fake_clio.requests)
        with pytest.raises(ReauthorizationRequired):
            await engine.clio.fetch_page(EntityType.MATTER, connection)
        assert len(fake_clio.requests) == requests_before

    @pytest.mark.asyncio
    async def test_refresh_rejected_degrades_connection(self, engine, connection, fake_clio):
        fake_clio.add("GET", MATTERS, httpx.Response(401))
        fake_clio.add("POST", TOKEN, httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(ReauthorizationRequired) as exc_info:
            await engine.clio.fetch_page(EntityType.MATTER, connection)

        assert exc_info.value.status_code == 409
        stored = await _load_connection(engine, connection.id)
        assert stored.status == ConnectionStatus.DEGRADED
        assert len(fake_clio.calls("GET", MATTERS)) == 1


class TestFetchSingle:
    """Lectura de un registro por id."""

    @pytest.mark.asyncio
    async def test_returns_record(self, engine, connection, fake_clio):
        fake_clio.add("GET", "/api/v4/matters/789012.json", httpx.Response(200, json={"data": matter_payload()}))

        record = await engine.clio.fetch_single(EntityType.MATTER, "789012", connection)

        assert record["id"] == 789012

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self, engine, connection, fake_clio):
        record = await engine.clio.fetch_single(EntityType.MATTER, "404404", connection)

        assert record is None


class TestRegisterWebhook:
    """Suscripcion de webhooks."""

    @pytest.mark.asyncio
    async def test_returns_subscription_id_as_string(self, engine, connection, fake_clio):
        fake_clio.add("POST", "/api/v4/webhooks.json", httpx.Response(201, json={"data": {"id": 4242}}))

        subscription_id = await engine.clio.register_webhook(
            EntityType.CONTACT,
            "https://sync.test/api/v1/webhooks/clio",
            connection,
        )

        assert subscription_id == "4242"
        request = fake_clio.calls("POST", "/api/v4/webhooks.json")[0]
        body = json.loads(request.content)
        assert body["data"]["model"] == "contact"
        assert body["data"]["url"] == "https://sync.test/api/v1/webhooks/clio"
        assert set(body["data"]["events"]) == {"created", "updated", "deleted"}
