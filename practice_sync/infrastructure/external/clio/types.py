"""
Tipos y utilidades puras para el cliente Clio.

Se mantienen libres de I/O para poder testearlos facilmente.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlparse


@dataclass(frozen=True)
class RemotePage:
    """
    Una pagina de resultados remotos.

    next_cursor es None cuando no quedan mas paginas.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.next_cursor is None


@dataclass(frozen=True)
class OAuthTokens:
    """Par de credenciales devuelto por el endpoint de token."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]


Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldMapping:
    """
    Define el mapeo de un campo remoto a una columna local.

    - source_path: ruta con puntos dentro del payload ("client.id")
    - column: nombre de la columna local
    - transform: funcion opcional para convertir el valor antes de persistir
    - required: si True, el valor debe existir (si falta se levanta MalformedPayload)
    """

    source_path: str
    column: str
    transform: Optional[Transform] = None
    required: bool = False


def decode_json(raw: bytes | str) -> Any:
    """
    Decodifica JSON remoto.

    json de la stdlib parsea enteros con precision arbitraria, asi que
    los identificadores grandes no pierden digitos. Los numeros con decimales
    se leen como Decimal para conservar montos exactos.
    """
    from decimal import Decimal

    return json.loads(raw, parse_float=Decimal)


def extract_page_token(next_url: Optional[str]) -> Optional[str]:
    """
    Extrae el cursor (page_token) de la URL `meta.paging.next` de Clio.

    Se guarda solo el token (no la URL) para no seguir URLs arbitrarias
    con el bearer token de la conexion.
    """
    if not next_url:
        return None
    values = parse_qs(urlparse(next_url).query).get("page_token")
    return values[0] if values else None


def lookup_path(payload: dict[str, Any], path: str) -> tuple[bool, Any]:
    """
    Busca una ruta con puntos en el payload.

    Returns:
        (encontrado, valor). Un valor null explicito cuenta como no encontrado.
    """
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    if current is None:
        return False, None
    return True, current
