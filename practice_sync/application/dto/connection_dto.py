"""
DTOs de conexiones con la cuenta remota.
"""
from typing import Dict, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from practice_sync.shared.constants.sync_constants import ConnectionStatus


class ConnectionLinkDTO(BaseModel):
    """
    DTO para vincular una cuenta remota tras el intercambio OAuth.

    Los tokens llegan del servicio de autenticacion y se guardan cifrados.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, max_length=255, alias="userId")
    remote_account_id: str = Field(..., min_length=1, max_length=64, alias="remoteAccountId")
    access_token: str = Field(..., min_length=1, alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    expires_in: Optional[int] = Field(None, ge=0, alias="expiresIn", description="Segundos de vida del access token")


class ConnectionResponseDTO(BaseModel):
    """DTO de respuesta de una conexion (sin credenciales)."""

    id: int
    user_id: str
    remote_account_id: str
    status: ConnectionStatus
    credential_state: str = Field(..., description="valid, expiring o invalid")
    token_expires_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    webhook_subscriptions: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class DisconnectResponseDTO(BaseModel):
    """Resultado de desconectar una cuenta."""

    user_id: str
    connection_id: int
    cancelled_jobs: int
    message: str
