"""
Casos de uso de lectura de metricas operativas.
"""
from datetime import date
from typing import Optional

from practice_sync.application.dto.metrics_dto import MetricsSummaryDTO
from practice_sync.infrastructure.metrics.metrics_recorder import MetricsRecorder


class MetricsUseCases:
    """Resumenes horarios y diarios sobre el almacen de metricas."""

    def __init__(self, metrics: MetricsRecorder):
        self.metrics = metrics

    async def get_hourly(self, day: Optional[date] = None, hour: Optional[int] = None) -> MetricsSummaryDTO:
        """
        Raises:
            MetricsUnavailable: Si el almacen de metricas no responde
        """
        return MetricsSummaryDTO(**await self.metrics.get_hourly(day, hour))

    async def get_daily(self, day: Optional[date] = None) -> MetricsSummaryDTO:
        return MetricsSummaryDTO(**await self.metrics.get_daily(day))
