"""
Casos de uso de la aplicacion.
"""
from .sync_use_cases import SyncUseCases
from .webhook_use_cases import WebhookUseCases
from .connection_use_cases import ConnectionUseCases
from .metrics_use_cases import MetricsUseCases

__all__ = ["SyncUseCases", "WebhookUseCases", "ConnectionUseCases", "MetricsUseCases"]
