"""
Lock en proceso por clave de sincronizacion (connection_id, entity_type).

Motivacion:
- Dos jobs de la misma clave no pueden correr a la vez (orden FIFO y
  marca de agua consistentes).
- La garantia entre procesos la da el claim condicional en base de datos;
  este lock evita que los workers del mismo proceso compitan por el mismo
  job y gasten un UPDATE que va a fallar.

Caracteristicas:
- Adquisicion no bloqueante: un worker que no obtiene la clave pasa al
  siguiente job elegible en lugar de esperar
- Limpieza de locks de claves sin uso
"""

from __future__ import annotations

from typing import Hashable, Set

from loguru import logger


class SyncKeyLockManager:
    """
    Gestor de claves ocupadas.

    Todos los workers corren en el mismo event loop, asi que un set basta:
    entre `try_acquire` y su retorno no hay puntos de suspension.
    """

    def __init__(self) -> None:
        self._held: Set[Hashable] = set()

    def try_acquire(self, key: Hashable) -> bool:
        """
        Intenta tomar la clave sin esperar.

        Returns:
            True si la clave quedo tomada por el caller
        """
        if key in self._held:
            return False
        self._held.add(key)
        return True

    def release(self, key: Hashable) -> None:
        """Libera la clave (idempotente)."""
        if key not in self._held:
            logger.debug(f"Release de clave no tomada: {key}")
            return
        self._held.discard(key)

    def get_active_locks_count(self) -> int:
        """Retorna el numero de claves tomadas (para monitoreo)."""
        return len(self._held)
