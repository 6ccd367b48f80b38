"""
INSERT ... ON CONFLICT segun el dialecto de la sesion.

PostgreSQL en produccion, SQLite en tests: ambos soportan
`on_conflict_do_update` con la misma API.
"""
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


def insert_for(session: AsyncSession, table):
    """Retorna el constructor `insert` con soporte de ON CONFLICT para la sesion."""
    name = dialect_name(session)
    if name == "postgresql":
        return pg_insert(table)
    if name == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Dialecto sin soporte de upsert: {name}")
