"""
Tests del repositorio de conexiones: credenciales, marcas de agua y baja.
"""
from datetime import datetime, timezone

import pytest

from practice_sync.infrastructure.repositories.connection_repository_impl import ConnectionRepositoryImpl
from practice_sync.shared.constants.sync_constants import ConnectionStatus, EntityType


EARLY = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
LATE = datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)


class TestWatermark:
    """La marca de agua solo avanza."""

    @pytest.mark.asyncio
    async def test_missing_watermark_is_none(self, engine, connection):
        async with engine.session_factory() as session:
            watermark = await ConnectionRepositoryImpl(session).get_watermark(connection.id, EntityType.MATTER)

        assert watermark is None

    @pytest.mark.asyncio
    async def test_watermark_moves_forward_only(self, engine, connection):
        async with engine.session_factory() as session:
            repo = ConnectionRepositoryImpl(session)
            await repo.advance_watermark(connection.id, EntityType.MATTER, LATE)
            await repo.advance_watermark(connection.id, EntityType.MATTER, EARLY)
            await session.commit()

            assert await repo.get_watermark(connection.id, EntityType.MATTER) == LATE
            assert await repo.get_watermark(connection.id, EntityType.CONTACT) is None
            stored = await repo.get_by_id(connection.id)
            assert stored.last_synced_at == LATE


class TestCredentials:
    """Versionado de credenciales."""

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, engine, connection):
        async with engine.session_factory() as session:
            repo = ConnectionRepositoryImpl(session)
            won = await repo.update_credentials_if_version(
                connection.id,
                expected_version=connection.credentials_version,
                access_token_encrypted="a",
                refresh_token_encrypted="r",
                token_expires_at=None,
            )
            lost = await repo.update_credentials_if_version(
                connection.id,
                expected_version=connection.credentials_version,
                access_token_encrypted="b",
                refresh_token_encrypted="r",
                token_expires_at=None,
            )
            await session.commit()

            stored = await repo.get_by_id(connection.id)

        assert won is True
        assert lost is False
        assert stored.access_token_encrypted == "a"
        assert stored.credentials_version == connection.credentials_version + 1

    @pytest.mark.asyncio
    async def test_relinking_reuses_connection(self, engine, make_connection):
        first = await make_connection("user-1", access="old")
        second = await make_connection("user-1", access="new")

        assert second.id == first.id
        assert second.credentials_version == first.credentials_version + 1
        assert engine.cipher.decrypt(second.access_token_encrypted) == "new"


class TestDisable:
    """Baja de la conexion."""

    @pytest.mark.asyncio
    async def test_disable_drops_credentials(self, engine, connection):
        async with engine.session_factory() as session:
            repo = ConnectionRepositoryImpl(session)
            await repo.set_webhook_subscriptions(connection.id, {"matters": "1"})
            await repo.disable(connection.id)
            await session.commit()

            stored = await repo.get_by_id(connection.id)
            active = await repo.get_active_by_user("user-1")

        assert stored.status == ConnectionStatus.DISABLED
        assert stored.access_token_encrypted is None
        assert stored.refresh_token_encrypted is None
        assert stored.webhook_subscriptions == {}
        assert active is None
