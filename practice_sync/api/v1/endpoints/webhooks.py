"""
Endpoints de webhooks.

El receptor firma-verifica los bytes crudos del request, encola un job
acotado y responde 202 sin llamar a la API remota.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from practice_sync.api.v1.dependencies.use_case_deps import get_webhook_use_cases
from practice_sync.application.dto.webhook_dto import WebhookAckDTO, WebhookRegistrationDTO
from practice_sync.application.use_cases.webhook_use_cases import WebhookUseCases


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/register/{user_id}",
    response_model=WebhookRegistrationDTO,
    summary="Registrar webhooks en Clio"
)
async def register_webhooks(
    user_id: str,
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
) -> WebhookRegistrationDTO:
    """
    Registra una suscripcion por tipo de entidad para la conexion del usuario.

    Args:
        user_id: Usuario local
        use_cases: Casos de uso de webhooks (inyectado)

    Returns:
        WebhookRegistrationDTO: Tipos registrados e IDs de suscripcion
    """
    return await use_cases.register(user_id)


@router.post(
    "/{provider}",
    response_model=WebhookAckDTO,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Recibir un webhook"
)
async def receive_webhook(
    provider: str,
    request: Request,
    signature: Optional[str] = Header(None, alias="X-Signature"),
    use_cases: WebhookUseCases = Depends(get_webhook_use_cases)
) -> WebhookAckDTO:
    """
    Recibe una notificacion del proveedor.

    Args:
        provider: Proveedor emisor (clio)
        request: Peticion HTTP (se firma sobre el cuerpo crudo)
        signature: Header X-Signature (HMAC-SHA256 hex)
        use_cases: Casos de uso de webhooks (inyectado)

    Returns:
        WebhookAckDTO: accepted con el job encolado, o ignored
    """
    raw_body = await request.body()
    return await use_cases.receive(provider, raw_body, signature)
