"""
Entidad de dominio: Connection (Conexion con la cuenta remota).
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional

from practice_sync.shared.constants.sync_constants import ConnectionStatus, CredentialState
from practice_sync.shared.utils.datetime_utils import ensure_utc, utc_now


@dataclass
class Connection:
    """
    Autorizacion que liga un usuario local con su cuenta remota.

    Las credenciales se guardan cifradas; el descifrado ocurre solo en el
    gestor de credenciales, justo antes de cada llamada remota.
    """

    id: Optional[int] = None
    user_id: str = ""
    remote_account_id: str = ""
    access_token_encrypted: Optional[str] = None
    refresh_token_encrypted: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    credentials_version: int = 0
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    last_synced_at: Optional[datetime] = None
    webhook_subscriptions: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validaciones despues de la inicializacion."""
        if not self.user_id:
            raise ValueError("La conexion debe pertenecer a un usuario")

    def credential_state(self, skew_seconds: int = 300, now: Optional[datetime] = None) -> CredentialState:
        """
        Evalua el sub-estado de las credenciales.

        Args:
            skew_seconds: Margen antes de la expiracion en el que se refresca
            now: Instante de referencia (para tests)

        Returns:
            CredentialState: VALID, EXPIRING o INVALID
        """
        if self.status != ConnectionStatus.ACTIVE or not self.access_token_encrypted:
            return CredentialState.INVALID
        if self.token_expires_at is None:
            return CredentialState.VALID
        now = now or utc_now()
        if ensure_utc(self.token_expires_at) - timedelta(seconds=skew_seconds) <= now:
            return CredentialState.EXPIRING
        return CredentialState.VALID

    def is_active(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE
