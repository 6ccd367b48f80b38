"""
Entidad de dominio: WebhookEvent (transitoria, solo durante validacion/ruteo).
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from practice_sync.shared.constants.sync_constants import (
    WEBHOOK_MODEL_ENTITY_TYPES,
    EntityType,
    WebhookAction,
)


def is_known_event_type(event_type: str) -> bool:
    """True si el evento es `<modelo>.<accion>` con modelo y accion soportados."""
    model, _, action = event_type.partition(".")
    if model not in WEBHOOK_MODEL_ENTITY_TYPES:
        return False
    return action in {a.value for a in WebhookAction}


@dataclass(frozen=True)
class WebhookEvent:
    """Notificacion de cambio recibida desde el sistema remoto."""

    event_type: str
    remote_id: str
    user_id: str
    signature: str
    received_at: datetime
    occurred_at: Optional[datetime] = None

    def _parts(self) -> tuple:
        model, _, action = self.event_type.partition(".")
        return model, action

    @property
    def entity_type(self) -> Optional[EntityType]:
        """Tipo de entidad afectado, o None si el modelo no es conocido."""
        model, _ = self._parts()
        return WEBHOOK_MODEL_ENTITY_TYPES.get(model)

    @property
    def action(self) -> Optional[WebhookAction]:
        _, action = self._parts()
        try:
            return WebhookAction(action)
        except ValueError:
            return None

    def is_known(self) -> bool:
        """Eventos desconocidos se aceptan y descartan (compatibilidad futura)."""
        return is_known_event_type(self.event_type)
