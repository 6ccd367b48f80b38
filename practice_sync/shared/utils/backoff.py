"""
Politica de backoff exponencial con jitter.

La usan el cliente remoto (reintentos por request) y la cola de jobs
(reintentos por job). Las constantes vienen de configuracion.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True)
class BackoffPolicy:
    """
    delay(n) = min(max_delay, base_delay * 2**n) + jitter

    - base_delay: retardo del primer reintento (segundos)
    - max_delay: techo del retardo exponencial
    - jitter_ratio: fraccion maxima del retardo sumada aleatoriamente
    """

    base_delay: float
    max_delay: float
    jitter_ratio: float = 0.25
    rand: Callable[[], float] = field(default=random.random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Los retardos de backoff no pueden ser negativos")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio debe estar entre 0 y 1")

    def base_for(self, attempt: int) -> float:
        """Retardo exponencial (sin jitter) para el intento `attempt` (0-based)."""
        return min(self.max_delay, self.base_delay * (2 ** max(0, attempt)))

    def delay(self, attempt: int) -> float:
        base = self.base_for(attempt)
        return base + base * self.jitter_ratio * self.rand()
