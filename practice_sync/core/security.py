"""
Utilidades de seguridad: cifrado de credenciales y firmas de webhooks.
"""
import hashlib
import hmac
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from practice_sync.shared.exceptions.sync import SignatureInvalid


class CredentialCipher:
    """
    Cifrado simetrico (Fernet) de los tokens OAuth guardados en la conexion.
    """

    def __init__(self, key: str):
        """
        Args:
            key: Clave Fernet (urlsafe base64 de 32 bytes). Si viene vacia se
                 genera una efimera: solo valido en desarrollo/tests.
        """
        if not key:
            logger.warning(
                "CREDENTIALS_ENCRYPTION_KEY no configurada - usando clave efimera "
                "(las credenciales no sobreviven un reinicio)"
            )
            key = Fernet.generate_key().decode("utf-8")
        self._fernet = Fernet(key.encode("utf-8") if isinstance(key, str) else key)

    def encrypt(self, plain: Optional[str]) -> Optional[str]:
        """
        Cifra un token.

        Args:
            plain: Token en texto plano

        Returns:
            Optional[str]: Token cifrado o None si no habia token
        """
        if plain is None:
            return None
        return self._fernet.encrypt(plain.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        """
        Descifra un token.

        Raises:
            ValueError: Si el token no fue cifrado con esta clave
        """
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise ValueError("Credencial cifrada invalida o clave incorrecta") from e


class WebhookSignatureVerifier:
    """Valida firmas HMAC-SHA256 sobre los bytes crudos del request."""

    def __init__(self, secret: str, digestmod=hashlib.sha256):
        if not secret:
            raise ValueError("WEBHOOK_SHARED_SECRET no puede estar vacio")
        self._secret = secret.encode("utf-8")
        self._digestmod = digestmod

    def sign(self, raw_body: bytes) -> str:
        """Calcula la firma hex esperada para el cuerpo indicado."""
        return hmac.new(self._secret, raw_body, self._digestmod).hexdigest()

    def verify(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Compara en tiempo constante la firma recibida con la esperada.

        Raises:
            SignatureInvalid: Si la firma falta o no coincide
        """
        if not signature:
            raise SignatureInvalid()
        received = signature.strip().lower()
        # Los headers llegan decodificados en latin-1; compare_digest no acepta str no ASCII
        if not received.isascii():
            raise SignatureInvalid()
        expected = self.sign(raw_body)
        if not hmac.compare_digest(expected.encode("ascii"), received.encode("ascii")):
            raise SignatureInvalid()
