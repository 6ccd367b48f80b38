"""
Configuracion de fixtures para pytest.

- SyncEngine real sobre SQLite en archivo (aiosqlite), uno por test.
- Redis reemplazado por un doble en memoria con la misma API de pipeline.
- La API de Clio se simula con httpx.MockTransport (ver tests/support.py).
- Los sleeps del cliente remoto se registran en lugar de esperar.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import List

import httpx
import pytest
from cryptography.fernet import Fernet

from practice_sync.core.config import Settings
from practice_sync.core.engine import SyncEngine
from practice_sync.domain.entities.connection import Connection
from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.shared.utils.datetime_utils import utc_now
from tests.support import (
    CLIO_API,
    CLIO_TOKEN_URL,
    TEST_WEBHOOK_SECRET,
    FakeClio,
    FakeRedis,
)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Configuracion aislada: SQLite en tmp_path, sin workers, backoff sin jitter."""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        WEBHOOK_SHARED_SECRET=TEST_WEBHOOK_SECRET,
        CREDENTIALS_ENCRYPTION_KEY=Fernet.generate_key().decode("utf-8"),
        CLIO_BASE_URL=CLIO_API,
        CLIO_TOKEN_URL=CLIO_TOKEN_URL,
        CLIO_CLIENT_ID="client-id",
        CLIO_CLIENT_SECRET="client-secret",
        CLIO_RATE_LIMIT_PER_MINUTE=100000,
        CLIO_BACKOFF_JITTER_RATIO=0.0,
        SYNC_WORKERS_ENABLED=False,
        SYNC_MAX_ATTEMPTS=2,
        SYNC_BACKOFF_BASE_SECONDS=0.0,
        SYNC_DEQUEUE_POLL_SECONDS=0.05,
        WEBHOOK_CALLBACK_BASE_URL="https://sync.test/api/v1/webhooks",
        LOG_FILE=str(tmp_path / "app.log"),
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_clio() -> FakeClio:
    return FakeClio()


@pytest.fixture
def recorded_sleeps() -> List[float]:
    return []


@pytest.fixture
async def engine(test_settings, fake_redis, fake_clio, recorded_sleeps):
    """SyncEngine iniciado (sin workers) con dobles de Redis y Clio."""
    async def fake_sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)
        await asyncio.sleep(0)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_clio))
    sync_engine = SyncEngine(
        test_settings,
        redis_client=fake_redis,
        http_client=http_client,
        sleep=fake_sleep,
    )
    await sync_engine.start(create_schema=True, start_workers=False)
    yield sync_engine
    await sync_engine.shutdown()
    await http_client.aclose()


@pytest.fixture
def make_connection(engine):
    """Crea conexiones activas con credenciales cifradas."""
    async def _make(
        user_id: str = "user-1",
        *,
        access: str = "access-1",
        refresh: str = "refresh-1",
        expires_in: int = 3600,
    ) -> Connection:
        async with engine.session_factory() as session:
            connection = await ConnectionRepositoryImpl(session).save_credentials(
                user_id=user_id,
                remote_account_id="acct-1",
                access_token_encrypted=engine.cipher.encrypt(access),
                refresh_token_encrypted=engine.cipher.encrypt(refresh),
                token_expires_at=utc_now() + timedelta(seconds=expires_in),
            )
            await session.commit()
        return connection

    return _make


@pytest.fixture
async def connection(make_connection) -> Connection:
    """Conexion activa del usuario 'user-1' con token vigente."""
    return await make_connection()


@pytest.fixture
def app(engine):
    """App FastAPI con el engine de test inyectado (ASGITransport no corre el lifespan)."""
    from main import create_application
    return create_application(engine=engine)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
