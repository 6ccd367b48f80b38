"""
Punto de entrada principal de la aplicacion FastAPI.
Configura la aplicacion, middlewares, rutas y eventos.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from practice_sync.core.config import settings, get_cors_origins
from practice_sync.core.engine import SyncEngine
from practice_sync.core.events import startup_handler, shutdown_handler
from practice_sync.api.v1.router import api_router
from practice_sync.api.middlewares.error_handler import ErrorHandlerMiddleware
from practice_sync.shared.exceptions.base import AppException


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Eventos de inicio y cierre."""
    await startup_handler(application)()
    yield
    await shutdown_handler(application)()


def create_application(engine: Optional[SyncEngine] = None) -> FastAPI:
    """
    Factory para crear y configurar la aplicacion FastAPI.

    Args:
        engine: SyncEngine ya construido (tests); si es None se crea en el startup

    Returns:
        FastAPI: Instancia configurada de la aplicacion
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Motor de sincronizacion Clio: jobs, webhooks y metricas",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if engine is not None:
        application.state.sync_engine = engine

    # Configurar CORS
    cors_origins = get_cors_origins(settings.CORS_ORIGINS)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware personalizado para manejo de errores
    application.add_middleware(ErrorHandlerMiddleware)

    # Incluir routers de la API
    application.include_router(api_router, prefix="/api")

    # Manejador global de excepciones personalizadas
    @application.exception_handler(AppException)
    async def app_exception_handler(request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "details": exc.details
            }
        )

    # Health check endpoint
    @application.get("/health", tags=["Health"])
    async def health_check():
        """Estado de la aplicacion y de sus dependencias (base de datos y cache)."""
        sync_engine = getattr(application.state, "sync_engine", None)
        if sync_engine is None or not sync_engine.started:
            report = {
                "status": "unhealthy",
                "services": {"database": "down", "cache": "down"},
            }
        else:
            report = await sync_engine.health()

        report.update({
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        })
        status_code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if report["status"] == "unhealthy"
            else status.HTTP_200_OK
        )
        return JSONResponse(status_code=status_code, content=report)

    return application


# Crear instancia de la aplicacion
app = create_application()


if __name__ == "__main__":
    import uvicorn
    from loguru import logger

    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.info("=" * 70)
    logger.info("URLS DISPONIBLES:")
    logger.info("=" * 70)
    logger.info(f"  Swagger UI:  {base_url}/docs")
    logger.info(f"  Health:      {base_url}/health")
    logger.info("=" * 70)

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
