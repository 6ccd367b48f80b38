"""
Entidades del dominio.
"""
from practice_sync.domain.entities.connection import Connection
from practice_sync.domain.entities.sync_job import SyncJob
from practice_sync.domain.entities.remote_entity import RemoteEntity, TransformedEntity
from practice_sync.domain.entities.webhook_event import WebhookEvent

__all__ = [
    "Connection",
    "SyncJob",
    "RemoteEntity",
    "TransformedEntity",
    "WebhookEvent",
]
