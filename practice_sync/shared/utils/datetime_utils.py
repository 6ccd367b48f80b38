"""
Utilidades para manejo de fechas y horas.

Todo el motor trabaja con datetimes aware en UTC; SQLite (tests) devuelve
datetimes naive, por eso se normaliza al leer.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normaliza datetime a UTC (aware).

    Los datetimes naive se interpretan como UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """
    Parsea un string ISO 8601 (acepta sufijo 'Z') a datetime UTC.

    Raises:
        ValueError: Si el formato no es valido
    """
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return ensure_utc(dt)


def to_iso_z(dt: datetime) -> str:
    """Serializa datetime a ISO 8601 con 'Z' (UTC), sin microsegundos."""
    return ensure_utc(dt).replace(microsecond=0).isoformat().replace("+00:00", "Z")
