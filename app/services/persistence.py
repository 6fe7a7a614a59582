from abc import ABC, abstractmethod

import redis.asyncio as redis
from loguru import logger
from pydantic import ValidationError

from app.core.constants import RECORD_KEY
from app.core.errors import PersistenceError
from app.core.security import redact_identifier
from app.models.record import SecuredRecord


class PersistenceSink(ABC):
    """
    Interface for durable storage of secured records, keyed by
    (entity kind, entity id). Failures raise ``PersistenceError``.
    """

    @abstractmethod
    async def store(self, kind: str, entity_id: str, record: SecuredRecord) -> None:
        pass

    @abstractmethod
    async def load(self, kind: str, entity_id: str) -> SecuredRecord | None:
        pass

    async def close(self) -> None:
        return None


class RedisRecordSink(PersistenceSink):
    def __init__(self, url: str, key_prefix: str, ttl_seconds: int = 0, max_connections: int = 20) -> None:
        self.url = url
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self.max_connections = max_connections
        self._client: redis.Redis | None = None
        if not url:
            logger.warning("REDIS_URL is not set. Record persistence will fail until configured.")

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            logger.info("Creating Redis client for RedisRecordSink")
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=self.max_connections,
                health_check_interval=30,
                socket_keepalive=True,
            )
        return self._client

    def _format_key(self, kind: str, entity_id: str) -> str:
        return RECORD_KEY.format(prefix=self.key_prefix, operation=kind, entity_id=entity_id)

    async def store(self, kind: str, entity_id: str, record: SecuredRecord) -> None:
        """Store a secured record, overwriting any previous one for the key.

        Args:
            kind: Entity kind (the operation name)
            entity_id: Entity identifier
            record: The secured record to store

        Raises:
            PersistenceError: if Redis rejected or could not complete the write
        """
        key = self._format_key(kind, entity_id)
        try:
            client = await self.get_client()
            payload = record.model_dump_json()
            if self.ttl_seconds and self.ttl_seconds > 0:
                result = await client.setex(key, self.ttl_seconds, payload)
            else:
                result = await client.set(key, payload)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to store {kind} record for {redact_identifier(entity_id)}: {exc}")
            raise PersistenceError(f"Redis write failed: {exc}") from exc
        if not result:
            raise PersistenceError(f"Redis did not acknowledge write for {kind}")
        logger.debug(f"[{redact_identifier(entity_id)}] Stored {kind} record")

    async def load(self, kind: str, entity_id: str) -> SecuredRecord | None:
        key = self._format_key(kind, entity_id)
        try:
            client = await self.get_client()
            raw = await client.get(key)
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Failed to load {kind} record for {redact_identifier(entity_id)}: {exc}")
            raise PersistenceError(f"Redis read failed: {exc}") from exc
        if not raw:
            return None
        try:
            return SecuredRecord.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(f"Stored {kind} record for {redact_identifier(entity_id)} is corrupt: {exc}")
            return None

    async def close(self) -> None:
        """Close and disconnect the Redis client"""
        if self._client is not None:
            try:
                await self._client.close()
                logger.info("RedisRecordSink client closed")
            except Exception as exc:
                logger.warning(f"Failed to close RedisRecordSink client: {exc}")
            finally:
                self._client = None
