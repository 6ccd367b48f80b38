"""
Endpoints de metricas operativas (contadores horarios y diarios).
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from practice_sync.api.v1.dependencies.use_case_deps import get_metrics_use_cases
from practice_sync.application.dto.metrics_dto import MetricsSummaryDTO
from practice_sync.application.use_cases.metrics_use_cases import MetricsUseCases


router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.get(
    "/hourly",
    response_model=MetricsSummaryDTO,
    summary="Metricas de una hora"
)
async def get_hourly_metrics(
    day: Optional[date] = Query(None, alias="date", description="Fecha UTC (por defecto hoy)"),
    hour: Optional[int] = Query(None, ge=0, le=23, description="Hora UTC (por defecto la actual)"),
    use_cases: MetricsUseCases = Depends(get_metrics_use_cases)
) -> MetricsSummaryDTO:
    """
    Eventos, errores por codigo, tasas de error y duraciones promedio.

    Returns:
        MetricsSummaryDTO: Resumen de la hora pedida
    """
    return await use_cases.get_hourly(day, hour)


@router.get(
    "/daily",
    response_model=MetricsSummaryDTO,
    summary="Metricas de un dia"
)
async def get_daily_metrics(
    day: Optional[date] = Query(None, alias="date", description="Fecha UTC (por defecto hoy)"),
    use_cases: MetricsUseCases = Depends(get_metrics_use_cases)
) -> MetricsSummaryDTO:
    return await use_cases.get_daily(day)
