"""
Casos de uso de webhooks: recepcion de notificaciones y registro de
suscripciones en Clio.

La recepcion nunca llama a la API remota: valida la firma, rutea el evento
a un job acotado (una sola entidad) y responde de inmediato. Las entregas
duplicadas son inofensivas porque el UPSERT es idempotente.
"""
from typing import Any, Dict, Optional, Tuple

from loguru import logger

from practice_sync.application.dto.webhook_dto import WebhookAckDTO, WebhookRegistrationDTO
from practice_sync.core.security import WebhookSignatureVerifier
from practice_sync.domain.entities.webhook_event import WebhookEvent, is_known_event_type
from practice_sync.domain.repositories.connection_repository import IConnectionRepository
from practice_sync.infrastructure.external.clio.clio_client import ClioClient
from practice_sync.infrastructure.external.clio.entity_mappings import to_remote_id
from practice_sync.infrastructure.external.clio.types import decode_json
from practice_sync.infrastructure.metrics.metrics_recorder import MetricsRecorder
from practice_sync.infrastructure.queue.job_queue import JobQueue
from practice_sync.shared.constants.sync_constants import (
    SUPPORTED_WEBHOOK_PROVIDERS,
    EntityType,
    SyncMode,
    WebhookAction,
)
from practice_sync.shared.exceptions.domain import (
    ConnectionNotFound,
    EntityNotFoundException,
    ValidationException,
)
from practice_sync.shared.exceptions.sync import SignatureInvalid
from practice_sync.shared.utils.datetime_utils import parse_iso_datetime, utc_now


WEBHOOK_METRIC = "webhook"


class WebhookUseCases:
    """Recepcion y registro de webhooks."""

    def __init__(
        self,
        connection_repository: IConnectionRepository,
        queue: JobQueue,
        verifier: WebhookSignatureVerifier,
        metrics: MetricsRecorder,
        client: Optional[ClioClient] = None,
        callback_base_url: str = "",
    ):
        self.connection_repository = connection_repository
        self.queue = queue
        self.verifier = verifier
        self.metrics = metrics
        self.client = client
        self.callback_base_url = callback_base_url.rstrip("/")

    async def receive(self, provider: str, raw_body: bytes, signature: Optional[str]) -> WebhookAckDTO:
        """
        Procesa un webhook entrante.

        Args:
            provider: Proveedor de la URL (/webhooks/{provider})
            raw_body: Bytes exactos del request (la firma se calcula sobre ellos)
            signature: Header X-Signature

        Returns:
            WebhookAckDTO: accepted (con job) o ignored

        Raises:
            EntityNotFoundException: Proveedor desconocido
            SignatureInvalid: Firma ausente o incorrecta
            ValidationException: Sobre del evento invalido
        """
        if provider not in SUPPORTED_WEBHOOK_PROVIDERS:
            raise EntityNotFoundException("WebhookProvider", provider)

        try:
            self.verifier.verify(raw_body, signature)
        except SignatureInvalid:
            logger.warning(f"Webhook {provider} rechazado: firma invalida")
            await self.metrics.record_error(WEBHOOK_METRIC, "SIGNATURE_INVALID")
            raise

        envelope, event_type = self._decode_envelope(raw_body)

        # Tipos desconocidos se descartan antes de exigir entity_id / user_id
        if not is_known_event_type(event_type):
            logger.info(f"Webhook {provider}: evento desconocido '{event_type}' ignorado")
            await self.metrics.record_event(f"{WEBHOOK_METRIC}.ignored")
            return WebhookAckDTO(status="ignored", reason="unknown_event_type")

        event = self._parse_event(envelope, event_type, signature)

        connection = await self.connection_repository.get_active_by_user(event.user_id)
        if connection is None:
            logger.warning(f"Webhook {event.event_type} para usuario sin conexion: {event.user_id}")
            await self.metrics.record_error(WEBHOOK_METRIC, "CONNECTION_NOT_FOUND")
            return WebhookAckDTO(status="ignored", reason="unknown_connection")

        mode = SyncMode.DELETE if event.action == WebhookAction.DELETED else SyncMode.SINGLE
        job = await self.queue.enqueue(
            connection.id,
            event.entity_type,
            mode,
            remote_id=event.remote_id,
        )
        await self.metrics.record_event(f"{WEBHOOK_METRIC}.{event.event_type}")
        logger.info(f"Webhook {event.event_type} remote_id={event.remote_id} -> job {job.id}")
        return WebhookAckDTO(status="accepted", job_id=job.id)

    @staticmethod
    def _decode_envelope(raw_body: bytes) -> Tuple[Dict[str, Any], str]:
        try:
            envelope = decode_json(raw_body)
        except ValueError as e:
            raise ValidationException("El cuerpo del webhook no es JSON valido") from e
        if not isinstance(envelope, dict):
            raise ValidationException("El cuerpo del webhook debe ser un objeto")

        event_type = envelope.get("event_type")
        if not isinstance(event_type, str) or not event_type:
            raise ValidationException("event_type es requerido", field="event_type")
        return envelope, event_type

    def _parse_event(
        self, envelope: Dict[str, Any], event_type: str, signature: Optional[str]
    ) -> WebhookEvent:
        user_id = envelope.get("user_id")
        if user_id is None or isinstance(user_id, bool) or str(user_id) == "":
            raise ValidationException("user_id es requerido", field="user_id")

        try:
            remote_id = to_remote_id(envelope.get("entity_id"))
        except TypeError as e:
            raise ValidationException(f"entity_id invalido: {e}", field="entity_id") from e

        return WebhookEvent(
            event_type=event_type,
            remote_id=remote_id,
            user_id=str(user_id),
            signature=signature or "",
            received_at=utc_now(),
            occurred_at=self._parse_timestamp(envelope.get("timestamp")),
        )

    @staticmethod
    def _parse_timestamp(value: Any):
        if value is None:
            return None
        try:
            return parse_iso_datetime(str(value))
        except ValueError:
            logger.debug(f"Timestamp de webhook no parseable: {value!r}")
            return None

    async def register(self, user_id: str, provider: str = "clio") -> WebhookRegistrationDTO:
        """
        Registra una suscripcion por tipo de entidad y guarda sus IDs en la conexion.

        Raises:
            ConnectionNotFound: Si el usuario no tiene conexion activa (sin efectos)
        """
        connection = await self.connection_repository.get_active_by_user(user_id)
        if connection is None:
            raise ConnectionNotFound(user_id)

        callback_url = f"{self.callback_base_url}/{provider}"
        subscriptions: Dict[str, str] = dict(connection.webhook_subscriptions)

        for entity_type in EntityType:
            if entity_type.value in subscriptions:
                logger.debug(f"Webhook de {entity_type.value} ya registrado para conexion {connection.id}")
                continue
            subscriptions[entity_type.value] = await self.client.register_webhook(
                entity_type, callback_url, connection
            )

        await self.connection_repository.set_webhook_subscriptions(connection.id, subscriptions)
        logger.success(f"Webhooks registrados para usuario {user_id}: {sorted(subscriptions)}")

        return WebhookRegistrationDTO(
            user_id=str(user_id),
            connection_id=connection.id,
            registered_entity_types=[t.value for t in EntityType if t.value in subscriptions],
            subscriptions=subscriptions,
        )
