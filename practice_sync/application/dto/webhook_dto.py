"""
DTOs de webhooks: respuesta del receptor y registro de suscripciones.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class WebhookAckDTO(BaseModel):
    """Acuse de recibo devuelto al emisor del webhook (siempre 202)."""

    status: str = Field(..., description="accepted o ignored")
    job_id: Optional[int] = Field(None, description="Job encolado (solo si accepted)")
    reason: Optional[str] = Field(None, description="Motivo cuando se ignora el evento")


class WebhookRegistrationDTO(BaseModel):
    """Resultado del registro de webhooks de una conexion."""

    user_id: str = Field(..., description="Usuario local")
    connection_id: int = Field(..., description="Conexion registrada")
    registered_entity_types: List[str] = Field(..., description="Tipos de entidad suscritos")
    subscriptions: Dict[str, str] = Field(default_factory=dict, description="ID de suscripcion por tipo")
