import asyncio
import base64
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from loguru import logger

from app.core.errors import SecurityError
from app.models.record import SecuredRecord, TransformedRecord

INSECURE_SECRETS = {"", "change-me"}


class RecordCodec(ABC):
    """
    Interface for securing transformed records.

    ``decode`` must be the exact inverse of ``encode``. Failures raise
    ``SecurityError``.
    """

    scheme: str = ""

    @abstractmethod
    async def encode(self, record: TransformedRecord) -> SecuredRecord:
        pass

    @abstractmethod
    async def decode(self, secured: SecuredRecord) -> TransformedRecord:
        pass


class FernetRecordCodec(RecordCodec):
    """Fernet (AES-128-CBC + HMAC) with a key derived from the configured secret."""

    scheme = "fernet"
    KDF_SALT = b"q9Vt2LpR7sKd4Hm8ZxWc3NfB6yJa1UeG"
    KDF_ITERATIONS = 200_000

    def __init__(self, secret: str):
        self._secret = secret or ""
        self._cipher: Fernet | None = None
        if self._secret in INSECURE_SECRETS:
            logger.warning("RECORD_SECRET is missing or using the default placeholder. Records cannot be secured.")

    def _ensure_secure_secret(self) -> None:
        if self._secret in INSECURE_SECRETS:
            logger.error("Refusing to secure records because RECORD_SECRET is unset or using the insecure default.")
            raise SecurityError("Server misconfiguration: RECORD_SECRET must be set to a non-default value.")

    def _derive_cipher(self) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self.KDF_SALT,
            iterations=self.KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._secret.encode("utf-8")))
        return Fernet(key)

    async def _get_cipher(self) -> Fernet:
        self._ensure_secure_secret()
        if self._cipher is None:
            # Key derivation is deliberately slow; keep it off the event loop
            self._cipher = await asyncio.to_thread(self._derive_cipher)
        return self._cipher

    async def encode(self, record: TransformedRecord) -> SecuredRecord:
        cipher = await self._get_cipher()
        try:
            token = cipher.encrypt(record.model_dump_json().encode("utf-8"))
        except (TypeError, ValueError) as exc:
            raise SecurityError(f"Record could not be encrypted: {exc}") from exc
        return SecuredRecord(identifier=record.identifier, scheme=self.scheme, token=token.decode("utf-8"))

    async def decode(self, secured: SecuredRecord) -> TransformedRecord:
        if secured.scheme != self.scheme:
            raise SecurityError(f"Unsupported scheme '{secured.scheme}'")
        cipher = await self._get_cipher()
        try:
            raw = cipher.decrypt(secured.token.encode("utf-8"))
        except InvalidToken as exc:
            raise SecurityError("Secured record failed integrity check") from exc
        return TransformedRecord.model_validate_json(raw)
