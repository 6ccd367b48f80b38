"""
DTOs para metricas operativas del motor de sincronizacion.

Define las estructuras de datos para exponer contadores, tasas de error
y duraciones promedio a traves de la API REST.
"""
from typing import Dict, Optional
from pydantic import BaseModel, Field


class DurationStatsDTO(BaseModel):
    """Duraciones acumuladas de un tipo de evento."""

    total_ms: int = Field(..., description="Suma de duraciones en milisegundos")
    count: int = Field(..., description="Cantidad de muestras")
    avg_ms: float = Field(..., description="Duracion promedio")


class MetricsSummaryDTO(BaseModel):
    """
    Resumen de metricas de una hora o de un dia.

    - events: eventos exitosos por tipo
    - errors: errores por tipo y codigo
    - error_rates: errores / (exitos + errores) por tipo
    """

    date: str = Field(..., description="Fecha (YYYY-MM-DD, UTC)")
    hour: Optional[int] = Field(None, ge=0, le=23, description="Hora (solo en resumen horario)")
    events: Dict[str, int] = Field(default_factory=dict)
    errors: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    error_rates: Dict[str, float] = Field(default_factory=dict)
    durations: Dict[str, DurationStatsDTO] = Field(default_factory=dict)
