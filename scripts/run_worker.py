"""
CLI: pool de workers de sincronizacion sin la API HTTP.

Permite escalar horizontalmente: cada proceso toma jobs de la misma cola
durable (tabla sync_jobs). La API puede correr con SYNC_WORKERS_ENABLED=false
y dejar todo el procesamiento a estos procesos.

Ejecucion:
  python scripts/run_worker.py
  python scripts/run_worker.py --concurrency 8
  python scripts/run_worker.py --skip-schema
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

load_dotenv(_ROOT / ".env", override=False)

from practice_sync.core.config import settings
from practice_sync.core.engine import SyncEngine


async def _run(concurrency: int | None, create_schema: bool) -> None:
    config = settings
    if concurrency is not None:
        config = settings.model_copy(update={"SYNC_WORKER_CONCURRENCY": concurrency})

    logger.add(
        config.LOG_FILE,
        rotation="500 MB",
        retention="10 days",
        level=config.LOG_LEVEL
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: Ctrl+C llega como KeyboardInterrupt
            pass

    engine = SyncEngine(config)
    await engine.start(create_schema=create_schema, start_workers=True)
    logger.success(f"Workers iniciados (concurrencia={config.SYNC_WORKER_CONCURRENCY})")

    try:
        await stop.wait()
    finally:
        logger.info("Deteniendo workers...")
        await engine.shutdown()


def main() -> int:
    parser = argparse.ArgumentParser(description="Pool de workers de sincronizacion Clio")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Cantidad de workers (por defecto SYNC_WORKER_CONCURRENCY).",
    )
    parser.add_argument(
        "--skip-schema",
        action="store_true",
        help="No crear tablas al iniciar (usar cuando se migra con alembic).",
    )
    args = parser.parse_args()

    if args.concurrency is not None and args.concurrency <= 0:
        parser.error("--concurrency debe ser positivo")

    try:
        asyncio.run(_run(args.concurrency, create_schema=not args.skip_schema))
    except KeyboardInterrupt:
        logger.info("Interrumpido por el usuario")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
