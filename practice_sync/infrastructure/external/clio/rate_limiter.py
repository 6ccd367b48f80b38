"""
Rate limiter token-bucket por conexion.

Acota la tasa de llamadas salientes de cada conexion (Clio limita por token).
Los 429 que igual lleguen los maneja el backoff del cliente.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Hashable

from loguru import logger


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketRateLimiter:
    """
    Bucket independiente por clave (connection_id).

    - capacity: rafaga maxima
    - refill_per_second: tokens agregados por segundo
    """

    def __init__(
        self,
        *,
        capacity: int,
        refill_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity <= 0 or refill_per_second <= 0:
            raise ValueError("capacity y refill_per_second deben ser positivos")
        self._capacity = float(capacity)
        self._refill = refill_per_second
        self._clock = clock
        self._sleep = sleep
        self._buckets: Dict[Hashable, _Bucket] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    @classmethod
    def per_minute(cls, limit: int, **kwargs) -> "TokenBucketRateLimiter":
        """Construye un limiter para `limit` llamadas por minuto."""
        return cls(capacity=limit, refill_per_second=limit / 60.0, **kwargs)

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _refill_bucket(self, key: Hashable) -> _Bucket:
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=self._capacity, updated_at=now)
            self._buckets[key] = bucket
            return bucket
        elapsed = max(0.0, now - bucket.updated_at)
        bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._refill)
        bucket.updated_at = now
        return bucket

    async def acquire(self, key: Hashable) -> float:
        """
        Consume un token para `key`, esperando si el bucket esta vacio.

        Returns:
            float: Segundos esperados (0 si habia token disponible)
        """
        waited = 0.0
        async with self._lock_for(key):
            bucket = self._refill_bucket(key)
            while bucket.tokens < 1.0:
                wait_s = (1.0 - bucket.tokens) / self._refill
                logger.debug(f"Rate limit local para {key}: esperando {wait_s:.2f}s")
                await self._sleep(wait_s)
                waited += wait_s
                bucket = self._refill_bucket(key)
            bucket.tokens -= 1.0
        return waited
