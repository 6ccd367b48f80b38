"""
Pool de workers de sincronizacion.

Un numero fijo de tareas asyncio consume la cola durable. Cada worker:
- reclama un job (bloqueando hasta que haya uno elegible)
- lo ejecuta con el runner
- libera la clave en el lock en proceso

Una tarea adicional recupera periodicamente los jobs con lease vencido
(workers caidos en este u otro proceso).

Uso:
    pool = WorkerPool(queue, runner, concurrency=4)
    await pool.start()
    ...
    await pool.stop()
"""
import asyncio
import os
import socket
from typing import List, Optional

from loguru import logger

from practice_sync.infrastructure.queue.job_queue import JobQueue


class WorkerPool:
    """Ciclo de vida explicito: start() / stop()."""

    def __init__(
        self,
        queue: JobQueue,
        runner,
        *,
        concurrency: int = 4,
        dequeue_timeout: float = 5.0,
        recover_interval: float = 60.0,
        stop_grace_seconds: float = 30.0,
        name_prefix: Optional[str] = None,
    ):
        if concurrency <= 0:
            raise ValueError("concurrency debe ser positivo")
        self._queue = queue
        self._runner = runner
        self._concurrency = concurrency
        self._dequeue_timeout = dequeue_timeout
        self._recover_interval = recover_interval
        self._stop_grace = stop_grace_seconds
        self._prefix = name_prefix or f"{socket.gethostname()}-{os.getpid()}"
        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping.is_set()

    async def start(self) -> None:
        if self._tasks:
            logger.warning("WorkerPool ya iniciado")
            return
        self._stopping.clear()

        recovered = await self._queue.recover_stale()
        if recovered:
            logger.info(f"{recovered} jobs con lease vencido recuperados al iniciar")

        for index in range(self._concurrency):
            worker_id = f"{self._prefix}-w{index}"
            self._tasks.append(asyncio.create_task(self._worker_loop(worker_id), name=worker_id))
        self._tasks.append(asyncio.create_task(self._recovery_loop(), name=f"{self._prefix}-recovery"))
        logger.success(f"WorkerPool iniciado con {self._concurrency} workers")

    async def stop(self) -> None:
        """
        Detiene el pool: los workers terminan el job en curso (hasta el
        periodo de gracia) y luego se cancelan. Un job interrumpido queda
        IN_PROGRESS y lo recupera el siguiente recover_stale.
        """
        if not self._tasks:
            return
        self._stopping.set()
        logger.info("Deteniendo WorkerPool...")

        _, pending = await asyncio.wait(self._tasks, timeout=self._stop_grace)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"{len(pending)} tareas canceladas al detener el pool")

        self._tasks = []
        logger.info("WorkerPool detenido")

    async def _worker_loop(self, worker_id: str) -> None:
        logger.debug(f"Worker {worker_id} iniciado")
        while not self._stopping.is_set():
            try:
                job = await self._queue.dequeue(worker_id, timeout=self._dequeue_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Worker {worker_id}: error reclamando job: {e}")
                await asyncio.sleep(self._dequeue_timeout)
                continue

            if job is None:
                continue

            try:
                with logger.contextualize(job_id=job.id, worker_id=worker_id):
                    await self._runner.run(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # El runner clasifica sus propios errores; esto es un fallo del propio runner
                logger.exception(f"Worker {worker_id}: error no controlado en job {job.id}: {e}")
            finally:
                self._queue.release_key(job)
        logger.debug(f"Worker {worker_id} finalizado")

    async def _recovery_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._recover_interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self._queue.recover_stale()
            except Exception as e:
                logger.exception(f"Error recuperando jobs vencidos: {e}")
