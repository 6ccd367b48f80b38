"""
Dobles de test compartidos: Redis en memoria, API de Clio simulada y
constructores de payloads.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError


TEST_WEBHOOK_SECRET = "test-webhook-secret"
CLIO_API = "https://clio.test/api/v4"
CLIO_TOKEN_URL = "https://clio.test/oauth/token"


# ----------------------------------------------------------------------
# Redis en memoria
# ----------------------------------------------------------------------

class FakePipeline:
    """Pipeline que encola comandos y los aplica en execute()."""

    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._commands: List[Tuple[str, tuple]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._commands = []

    def hincrby(self, key: str, field: str, amount: int = 1) -> "FakePipeline":
        self._commands.append(("hincrby", (key, field, amount)))
        return self

    def expire(self, key: str, seconds: int) -> "FakePipeline":
        self._commands.append(("expire", (key, seconds)))
        return self

    def hgetall(self, key: str) -> "FakePipeline":
        self._commands.append(("hgetall", (key,)))
        return self

    async def execute(self) -> List[Any]:
        if self._redis.fail:
            raise RedisConnectionError("redis caido")
        results = [getattr(self._redis, f"_{name}")(*args) for name, args in self._commands]
        self._commands = []
        return results


class FakeRedis:
    """Doble de redis.asyncio.Redis con lo que usa el MetricsRecorder."""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, int]] = defaultdict(dict)
        self.ttls: Dict[str, int] = {}
        self.fail = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self) -> bool:
        if self.fail:
            raise RedisConnectionError("redis caido")
        return True

    async def aclose(self) -> None:
        return None

    def _hincrby(self, key: str, field: str, amount: int) -> int:
        self.hashes[key][field] = self.hashes[key].get(field, 0) + amount
        return self.hashes[key][field]

    def _expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    def _hgetall(self, key: str) -> Dict[str, str]:
        return {field: str(value) for field, value in self.hashes.get(key, {}).items()}

    def field(self, name: str) -> int:
        """Suma un campo en todas las horas registradas."""
        return sum(h.get(name, 0) for h in self.hashes.values())


# ----------------------------------------------------------------------
# API de Clio simulada
# ----------------------------------------------------------------------

Responder = Union[httpx.Response, Callable[[httpx.Request], Any]]


class FakeClio:
    """
    Handler para httpx.MockTransport.

    Cada ruta (metodo, path) tiene una lista de respuestas que se consumen en
    orden; la ultima se repite. Una respuesta puede ser un callable (sync o
    async) que recibe el request.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Responder) -> None:
        self.routes[(method.upper(), path)] = list(responses)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"message": "not found"}})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder):
            return responder(request)
        return responder


def clio_page(records: List[Dict[str, Any]], next_token: Optional[str] = None, endpoint: str = "matters") -> httpx.Response:
    """Respuesta de listado con el formato de Clio (data + meta.paging.next)."""
    paging = {}
    if next_token:
        paging["next"] = f"{CLIO_API}/{endpoint}.json?limit=200&page_token={next_token}"
    return httpx.Response(200, json={"data": records, "meta": {"paging": paging, "records": len(records)}})


def token_response(access: str = "access-2", refresh: str = "refresh-2", expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(
        200,
        json={"access_token": access, "refresh_token": refresh, "expires_in": expires_in, "token_type": "bearer"},
    )


def matter_payload(remote_id: Union[int, str] = 789012, **overrides) -> Dict[str, Any]:
    payload = {
        "id": remote_id,
        "display_number": "00001-Acme",
        "description": "Contrato de servicios",
        "status": "Open",
        "open_date": "2024-01-15",
        "billable": True,
        "practice_area": {"id": 3, "name": "Corporate"},
        "client": {"id": 555},
        "created_at": "2024-01-15T09:00:00Z",
        "updated_at": "2024-03-01T10:00:00Z",
    }
    payload.update(overrides)
    return payload


def signed_raw(raw: bytes) -> Dict[str, str]:
    """Headers con la firma de los bytes dados (secreto de test)."""
    signature = hmac.new(TEST_WEBHOOK_SECRET.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    return {"X-Signature": signature, "Content-Type": "application/json"}


def signed(body: Dict[str, Any]) -> Tuple[bytes, Dict[str, str]]:
    """Serializa un evento y calcula su firma con el secreto de test."""
    raw = json.dumps(body).encode("utf-8")
    return raw, signed_raw(raw)
