"""
Entorno de Alembic para el esquema de sincronizacion.

- La URL sale de Settings (DATABASE_URL o sus componentes).
- Las migraciones corren en modo sync: +asyncpg pasa a +psycopg.
- En SQLite se usa render_as_batch (ALTER TABLE limitado).
"""
import sys
from pathlib import Path
from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

from practice_sync.core.config import settings
from practice_sync.infrastructure.database.session import Base

# Registra las tablas en Base.metadata (autogenerate)
from practice_sync.infrastructure.database import models  # noqa: F401

config = context.config

migration_url = settings.effective_database_url.replace("+asyncpg", "+psycopg")
migration_url = migration_url.replace("+aiosqlite", "")
config.set_main_option("sqlalchemy.url", migration_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
IS_SQLITE = migration_url.startswith("sqlite")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=IS_SQLITE,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emite el SQL de las migraciones sin abrir conexion."""
    _configure(
        url=migration_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Aplica las migraciones sobre una conexion sin pool."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
