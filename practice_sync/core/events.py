"""
Manejadores de eventos de inicio y cierre de la aplicacion.
"""
from typing import Callable
from fastapi import FastAPI
from loguru import logger

from practice_sync.core.config import settings
from practice_sync.core.engine import SyncEngine


DEFAULT_WEBHOOK_SECRET = "change-this-webhook-secret"


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        try:
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            # Validar configuracion critica
            _validate_config()

            # Configurar logging adicional
            logger.add(
                settings.LOG_FILE,
                rotation="500 MB",
                retention="10 days",
                level=settings.LOG_LEVEL
            )

            # Un engine ya presente (tests) se respeta tal cual
            engine = getattr(app.state, "sync_engine", None)
            if engine is None:
                engine = SyncEngine(settings)
                app.state.sync_engine = engine
            await engine.start(start_workers=settings.SYNC_WORKERS_ENABLED)

            logger.success("Aplicacion iniciada correctamente")

            # Mostrar URLs disponibles
            _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if settings.WEBHOOK_SHARED_SECRET == DEFAULT_WEBHOOK_SECRET:
        warnings.append("WEBHOOK_SHARED_SECRET usa el valor por defecto - cambiarlo en produccion")

    if not settings.CLIO_CLIENT_ID or not settings.CLIO_CLIENT_SECRET:
        warnings.append("CLIO_CLIENT_ID/CLIO_CLIENT_SECRET no configurados - el refresh de tokens fallara")

    if not settings.CREDENTIALS_ENCRYPTION_KEY:
        warnings.append("CREDENTIALS_ENCRYPTION_KEY no configurada - se usara una clave efimera")

    # Mostrar advertencias
    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>URLS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:  {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:      {base_url}/health</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Webhooks:    {base_url}/api/v1/webhooks/clio</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync:        {base_url}/api/v1/sync</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicacion."""
        logger.info("Cerrando aplicacion...")

        engine = getattr(app.state, "sync_engine", None)
        if engine is not None:
            await engine.shutdown()

        logger.success("Aplicacion cerrada correctamente")

    return shutdown
