"""
Registro de metricas operativas en Redis.

Cada hora tiene un hash `sync_metrics:{YYYY-MM-DD}:{HH}` con contadores:
- event:{tipo}                 eventos exitosos
- error:{tipo}:{error}         errores por tipo y codigo
- duration_ms:{tipo}           suma de duraciones
- duration_count:{tipo}        cantidad de duraciones sumadas

Los hashes expiran a los METRICS_RETENTION_DAYS dias. Registrar metricas
nunca interrumpe una sincronizacion: los fallos se loguean y se descartan.
"""
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from loguru import logger
from redis.asyncio import Redis

from practice_sync.shared.exceptions.sync import MetricsUnavailable
from practice_sync.shared.utils.datetime_utils import utc_now


KEY_PREFIX = "sync_metrics"


def metrics_key(day: date, hour: int) -> str:
    return f"{KEY_PREFIX}:{day.isoformat()}:{hour:02d}"


def _to_str(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class MetricsRecorder:
    """Contadores horarios atomicos (HINCRBY dentro de un pipeline MULTI/EXEC)."""

    def __init__(
        self,
        redis_client: Redis,
        *,
        retention_days: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._redis = redis_client
        self._ttl_seconds = int(timedelta(days=retention_days).total_seconds())
        self._now = clock

    # ------------------------------------------------------------------
    # Escritura
    # ------------------------------------------------------------------

    async def record_event(self, event_type: str, count: int = 1) -> None:
        await self._increment({f"event:{event_type}": count})

    async def record_error(self, event_type: str, error: str) -> None:
        await self._increment({f"error:{event_type}:{error}": 1})

    async def record_duration(self, event_type: str, duration_ms: float) -> None:
        await self._increment({
            f"duration_ms:{event_type}": int(round(duration_ms)),
            f"duration_count:{event_type}": 1,
        })

    async def _increment(self, fields: Mapping[str, int]) -> None:
        now = self._now()
        key = metrics_key(now.date(), now.hour)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for field, amount in fields.items():
                    pipe.hincrby(key, field, amount)
                pipe.expire(key, self._ttl_seconds)
                await pipe.execute()
        except Exception as e:
            logger.warning(f"No se pudo registrar metrica en {key}: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    async def get_hourly(self, day: Optional[date] = None, hour: Optional[int] = None) -> Dict[str, Any]:
        """
        Resumen de una hora.

        Raises:
            MetricsUnavailable: Si Redis no responde
        """
        now = self._now()
        day = day or now.date()
        hour = now.hour if hour is None else hour
        raw = await self._read([metrics_key(day, hour)])
        summary = self._summarize(raw)
        summary.update({"date": day.isoformat(), "hour": hour})
        return summary

    async def get_daily(self, day: Optional[date] = None) -> Dict[str, Any]:
        """Resumen agregado de las 24 horas del dia."""
        day = day or self._now().date()
        raw = await self._read([metrics_key(day, h) for h in range(24)])
        summary = self._summarize(raw)
        summary.update({"date": day.isoformat()})
        return summary

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.warning(f"Redis no disponible: {type(e).__name__}: {e}")
            return False

    async def _read(self, keys) -> Dict[str, int]:
        totals: Dict[str, int] = defaultdict(int)
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.hgetall(key)
                results = await pipe.execute()
        except Exception as e:
            logger.error(f"Error leyendo metricas: {type(e).__name__}: {e}")
            raise MetricsUnavailable(str(e)) from e

        for hash_values in results:
            for field, value in (hash_values or {}).items():
                totals[_to_str(field)] += int(_to_str(value))
        return totals

    @staticmethod
    def _summarize(totals: Mapping[str, int]) -> Dict[str, Any]:
        events: Dict[str, int] = defaultdict(int)
        errors: Dict[str, Dict[str, int]] = defaultdict(dict)
        duration_ms: Dict[str, int] = defaultdict(int)
        duration_count: Dict[str, int] = defaultdict(int)

        for field, value in totals.items():
            kind, _, rest = field.partition(":")
            if kind == "event":
                events[rest] += value
            elif kind == "error":
                # El tipo puede contener ':'; el codigo de error es el ultimo segmento
                event_type, _, error = rest.rpartition(":")
                errors[event_type][error] = errors[event_type].get(error, 0) + value
            elif kind == "duration_ms":
                duration_ms[rest] += value
            elif kind == "duration_count":
                duration_count[rest] += value

        error_rates = {}
        for event_type in set(events) | set(errors):
            failed = sum(errors.get(event_type, {}).values())
            total = events.get(event_type, 0) + failed
            error_rates[event_type] = round(failed / total, 4) if total else 0.0

        durations = {
            event_type: {
                "total_ms": duration_ms.get(event_type, 0),
                "count": count,
                "avg_ms": round(duration_ms.get(event_type, 0) / count, 2) if count else 0.0,
            }
            for event_type, count in duration_count.items()
        }

        return {
            "events": dict(events),
            "errors": {k: dict(v) for k, v in errors.items()},
            "error_rates": error_rates,
            "durations": durations,
        }
