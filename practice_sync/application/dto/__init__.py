"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import SyncTriggerDTO, SyncJobStatusDTO, SyncBatchDTO, SyncCancelResponseDTO
from .webhook_dto import WebhookAckDTO, WebhookRegistrationDTO
from .connection_dto import ConnectionLinkDTO, ConnectionResponseDTO, DisconnectResponseDTO
from .metrics_dto import MetricsSummaryDTO, DurationStatsDTO
