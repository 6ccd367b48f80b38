"""
Configuracion central de la aplicacion.
Gestiona variables de entorno y configuraciones globales del motor de sync.
Soporta configuracion dinamica para desarrollo (ENVIRONMENT=development)
y produccion (ENVIRONMENT=production).
"""
import json
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno y proporciona valores por defecto.

    Grupos de configuracion:
    - Servidor y entorno
    - Base de datos relacional (DATABASE_URL o por componentes)
    - Almacen efimero de metricas (Redis)
    - API remota (Clio): URLs, credenciales OAuth, timeouts, backoff, rate limit
    - Cola de jobs y pool de workers
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Practice Sync Engine")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Base de datos - Componentes separados (recomendado para flexibilidad)
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="sync_user")
    DATABASE_PASSWORD: str = Field(default="sync_pass")
    DATABASE_NAME: str = Field(default="sync_db")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # Almacen efimero (metricas con expiracion)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    METRICS_RETENTION_DAYS: int = Field(default=7)
    # Timeouts cortos: un Redis colgado no debe frenar jobs ni webhooks
    METRICS_SOCKET_TIMEOUT_SECONDS: float = Field(default=0.5)

    # Webhooks
    WEBHOOK_SHARED_SECRET: str = Field(default="change-this-webhook-secret")
    WEBHOOK_CALLBACK_BASE_URL: str = Field(default="http://localhost:8000/api/v1/webhooks")

    # Cifrado de credenciales en reposo (clave Fernet urlsafe base64)
    CREDENTIALS_ENCRYPTION_KEY: str = Field(default="")

    # API remota (Clio v4)
    CLIO_BASE_URL: str = Field(default="https://app.clio.com/api/v4")
    CLIO_TOKEN_URL: str = Field(default="https://app.clio.com/oauth/token")
    CLIO_CLIENT_ID: str = Field(default="")
    CLIO_CLIENT_SECRET: str = Field(default="")
    CLIO_TIMEOUT_SECONDS: float = Field(default=30.0)
    CLIO_PAGE_SIZE: int = Field(default=200)
    CLIO_MAX_RETRIES: int = Field(default=5)
    CLIO_BACKOFF_BASE_SECONDS: float = Field(default=1.0)
    CLIO_BACKOFF_MAX_SECONDS: float = Field(default=30.0)
    CLIO_BACKOFF_JITTER_RATIO: float = Field(default=0.25)
    # Clio limita ~50 requests/minuto por token
    CLIO_RATE_LIMIT_PER_MINUTE: int = Field(default=50)
    CLIO_TOKEN_REFRESH_SKEW_SECONDS: int = Field(default=300)

    # Cola de jobs y workers
    SYNC_WORKERS_ENABLED: bool = Field(default=True)
    SYNC_WORKER_CONCURRENCY: int = Field(default=4)
    SYNC_MAX_ATTEMPTS: int = Field(default=5)
    SYNC_BACKOFF_BASE_SECONDS: float = Field(default=5.0)
    SYNC_BACKOFF_MAX_SECONDS: float = Field(default=300.0)
    SYNC_JOB_LEASE_SECONDS: int = Field(default=600)
    SYNC_DEQUEUE_POLL_SECONDS: float = Field(default=2.0)

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuracion de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        # Si no es JSON valido, retornar como lista simple
        return [origin.strip() for origin in cors_string.split(",")]


# Instancia global de configuracion
settings = Settings()
