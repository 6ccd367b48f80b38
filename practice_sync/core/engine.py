"""
SyncEngine: objeto de servicio que posee los recursos del motor.

Construye y cierra, en orden, el engine de base de datos, el cliente Redis,
el cliente HTTP, la cola de jobs y el pool de workers. Lo usan tanto la
aplicacion FastAPI (app.state.sync_engine) como el proceso de workers
independiente (scripts/run_worker.py).
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from loguru import logger
from redis.asyncio import Redis
from sqlalchemy import text

from practice_sync.application.services.entity_handlers import EntityHandlerRegistry
from practice_sync.application.services.sync_job_runner import SyncJobRunner
from practice_sync.core.config import Settings, settings as default_settings
from practice_sync.core.security import CredentialCipher, WebhookSignatureVerifier
from practice_sync.infrastructure.database.session import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from practice_sync.infrastructure.external.clio.clio_client import ClioClient
from practice_sync.infrastructure.external.clio.credentials import CredentialManager
from practice_sync.infrastructure.external.clio.oauth_client import ClioOAuthClient
from practice_sync.infrastructure.external.clio.rate_limiter import TokenBucketRateLimiter
from practice_sync.infrastructure.metrics.metrics_recorder import MetricsRecorder
from practice_sync.infrastructure.queue.job_queue import JobQueue
from practice_sync.infrastructure.queue.key_lock import SyncKeyLockManager
from practice_sync.infrastructure.queue.worker_pool import WorkerPool
from practice_sync.shared.utils.backoff import BackoffPolicy


def create_redis_client(cfg: Settings) -> Redis:
    """Cliente Redis de metricas con timeouts de socket acotados."""
    return Redis.from_url(
        cfg.REDIS_URL,
        decode_responses=True,
        socket_timeout=cfg.METRICS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=cfg.METRICS_SOCKET_TIMEOUT_SECONDS,
    )


class SyncEngine:
    """
    Contenedor del ciclo de vida del motor de sincronizacion.

    Los clientes Redis/HTTP pueden inyectarse (tests); si se inyectan, el
    engine no los cierra al apagarse.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        redis_client: Optional[Redis] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or default_settings
        self._injected_redis = redis_client
        self._injected_http = http_client
        self._sleep = sleep
        self._started = False

        self.db_engine = None
        self.session_factory = None
        self.redis: Optional[Redis] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.metrics: Optional[MetricsRecorder] = None
        self.cipher: Optional[CredentialCipher] = None
        self.verifier: Optional[WebhookSignatureVerifier] = None
        self.credentials: Optional[CredentialManager] = None
        self.clio: Optional[ClioClient] = None
        self.registry: Optional[EntityHandlerRegistry] = None
        self.queue: Optional[JobQueue] = None
        self.runner: Optional[SyncJobRunner] = None
        self.worker_pool: Optional[WorkerPool] = None

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, *, create_schema: bool = True, start_workers: bool = False) -> None:
        """
        Inicializa todos los recursos.

        Args:
            create_schema: Crea las tablas si no existen (en produccion usar alembic)
            start_workers: Arranca el pool de workers en este proceso
        """
        if self._started:
            return
        cfg = self.config

        self.db_engine = create_engine(
            cfg.effective_database_url,
            debug=cfg.DEBUG,
            pool_size=cfg.DB_POOL_SIZE,
            max_overflow=cfg.DB_MAX_OVERFLOW,
        )
        self.session_factory = create_session_factory(self.db_engine)
        if create_schema:
            await init_db(self.db_engine)
            logger.info("Base de datos inicializada")

        self.redis = self._injected_redis or create_redis_client(cfg)
        self.metrics = MetricsRecorder(self.redis, retention_days=cfg.METRICS_RETENTION_DAYS)

        self.http_client = self._injected_http or httpx.AsyncClient(timeout=cfg.CLIO_TIMEOUT_SECONDS)
        self.cipher = CredentialCipher(cfg.CREDENTIALS_ENCRYPTION_KEY)
        self.verifier = WebhookSignatureVerifier(cfg.WEBHOOK_SHARED_SECRET)

        oauth = ClioOAuthClient(
            self.http_client,
            token_url=cfg.CLIO_TOKEN_URL,
            client_id=cfg.CLIO_CLIENT_ID,
            client_secret=cfg.CLIO_CLIENT_SECRET,
            timeout_s=cfg.CLIO_TIMEOUT_SECONDS,
        )
        self.credentials = CredentialManager(
            self.session_factory,
            self.cipher,
            oauth,
            refresh_skew_seconds=cfg.CLIO_TOKEN_REFRESH_SKEW_SECONDS,
        )
        self.clio = ClioClient(
            self.http_client,
            self.credentials,
            TokenBucketRateLimiter.per_minute(cfg.CLIO_RATE_LIMIT_PER_MINUTE, sleep=self._sleep),
            base_url=cfg.CLIO_BASE_URL,
            page_size=cfg.CLIO_PAGE_SIZE,
            timeout_s=cfg.CLIO_TIMEOUT_SECONDS,
            max_retries=cfg.CLIO_MAX_RETRIES,
            backoff=BackoffPolicy(
                base_delay=cfg.CLIO_BACKOFF_BASE_SECONDS,
                max_delay=cfg.CLIO_BACKOFF_MAX_SECONDS,
                jitter_ratio=cfg.CLIO_BACKOFF_JITTER_RATIO,
            ),
            sleep=self._sleep,
        )
        self.registry = EntityHandlerRegistry.with_defaults(self.clio)

        self.queue = JobQueue(
            self.session_factory,
            key_locks=SyncKeyLockManager(),
            lease_seconds=cfg.SYNC_JOB_LEASE_SECONDS,
            poll_interval=cfg.SYNC_DEQUEUE_POLL_SECONDS,
            max_attempts=cfg.SYNC_MAX_ATTEMPTS,
        )
        self.runner = SyncJobRunner(
            self.session_factory,
            self.queue,
            self.registry,
            self.metrics,
            retry_backoff=BackoffPolicy(
                base_delay=cfg.SYNC_BACKOFF_BASE_SECONDS,
                max_delay=cfg.SYNC_BACKOFF_MAX_SECONDS,
                jitter_ratio=cfg.CLIO_BACKOFF_JITTER_RATIO,
            ),
        )
        self.worker_pool = WorkerPool(
            self.queue,
            self.runner,
            concurrency=cfg.SYNC_WORKER_CONCURRENCY,
            dequeue_timeout=cfg.SYNC_DEQUEUE_POLL_SECONDS,
            recover_interval=max(cfg.SYNC_JOB_LEASE_SECONDS / 4, 5.0),
        )

        self._started = True
        logger.success("SyncEngine iniciado")

        if start_workers:
            await self.worker_pool.start()

    async def shutdown(self) -> None:
        """Libera recursos en orden inverso al de inicio."""
        if not self._started:
            return

        if self.worker_pool is not None:
            await self.worker_pool.stop()

        if self.http_client is not None and self._injected_http is None:
            await self.http_client.aclose()
            logger.info("Cliente HTTP cerrado")

        if self.redis is not None and self._injected_redis is None:
            await self.redis.aclose()
            logger.info("Cliente Redis cerrado")

        if self.db_engine is not None:
            await close_db(self.db_engine)
            logger.info("Conexiones de base de datos cerradas")

        self._started = False
        logger.success("SyncEngine detenido")

    async def health(self) -> Dict[str, Any]:
        """
        Estado de las dependencias.

        - healthy: base de datos y cache responden
        - degraded: la base responde pero la cache (metricas) no
        - unhealthy: la base de datos no responde
        """
        database_ok = await self._check_database()
        cache_ok = await self.metrics.ping() if self.metrics is not None else False

        if not database_ok:
            status = "unhealthy"
        elif not cache_ok:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "services": {
                "database": "up" if database_ok else "down",
                "cache": "up" if cache_ok else "down",
            },
            "workers": "running" if self.worker_pool is not None and self.worker_pool.running else "stopped",
        }

    async def _check_database(self) -> bool:
        if self.session_factory is None:
            return False
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Health check de base de datos fallido: {type(e).__name__}: {e}")
            return False
