"""
Gestion de engine y sesiones de base de datos.

El engine no se crea al importar el modulo: lo construye el SyncEngine
(o el script de workers) a partir de la URL configurada, y lo comparten
repositorios, cola de jobs y endpoints via la session factory.
"""
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base


# Base para modelos de SQLAlchemy
Base = declarative_base()

SessionFactory = async_sessionmaker[AsyncSession]


def _create_engine_args(database_url: str, debug: bool, pool_size: int, max_overflow: int) -> dict:
    """
    Construye los argumentos del engine segun el tipo de base de datos.
    PostgreSQL usa pool de conexiones, SQLite no lo soporta.
    """
    args = {
        "echo": debug,
        "future": True,
    }

    # Configuracion de pool solo para PostgreSQL
    if "postgresql" in database_url:
        args.update({
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": True,  # Verifica conexion antes de usar
        })

    return args


def create_engine(
    database_url: str,
    *,
    debug: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Crea el engine async para la URL indicada."""
    return create_async_engine(
        database_url,
        **_create_engine_args(database_url, debug, pool_size, max_overflow),
    )


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Session factory compartida por repositorios y cola de jobs."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Generador de sesiones de base de datos.
    Para usar como dependencia en FastAPI (toma la factory del SyncEngine).

    Yields:
        AsyncSession: Sesion de base de datos
    """
    session_factory: SessionFactory = request.app.state.sync_engine.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(engine: AsyncEngine) -> None:
    """Inicializa la base de datos creando todas las tablas."""
    # Registrar modelos en Base.metadata antes de create_all
    import practice_sync.infrastructure.database.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Cierra las conexiones de la base de datos."""
    await engine.dispose()
