import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import redis.asyncio as redis
from cachetools import TTLCache
from loguru import logger
from pydantic import ValidationError

from app.core.constants import ESCALATION_KEY
from app.core.errors import AlertDeliveryError
from app.models.risk import EscalationRecord


class EscalationStore(ABC):
    """
    Deduplication store shared by every pipeline run.

    ``claim`` is the atomic check-and-record: it stores the record and
    returns True only when no unexpired record exists for the identifier.
    """

    def __init__(self, window_seconds: int):
        if window_seconds <= 0:
            raise ValueError("Deduplication window must be positive")
        self.window_seconds = window_seconds

    @abstractmethod
    async def claim(self, record: EscalationRecord) -> bool:
        pass

    @abstractmethod
    async def put(self, record: EscalationRecord) -> None:
        pass

    @abstractmethod
    async def get(self, identifier: str) -> EscalationRecord | None:
        pass

    @abstractmethod
    async def release(self, identifier: str) -> None:
        pass

    async def close(self) -> None:
        return None


class InMemoryEscalationStore(EscalationStore):
    """
    Process-local store; entries expire with the window.

    Markers only ever leave by expiry. When every slot holds an unexpired
    marker, new claims are refused instead of evicting a live one.
    """

    def __init__(self, window_seconds: int, maxsize: int = 10000, timer: Callable[[], float] = time.monotonic):
        super().__init__(window_seconds)
        self._records: TTLCache = TTLCache(maxsize=maxsize, ttl=window_seconds, timer=timer)
        self._lock = asyncio.Lock()

    def _ensure_capacity(self, identifier: str) -> None:
        if identifier in self._records:
            return
        self._records.expire()
        if len(self._records) >= self._records.maxsize:
            logger.error(f"Escalation store is full ({self._records.maxsize} live markers); refusing new claims")
            raise AlertDeliveryError("Escalation store is at capacity")

    async def claim(self, record: EscalationRecord) -> bool:
        async with self._lock:
            if record.identifier in self._records:
                return False
            self._ensure_capacity(record.identifier)
            self._records[record.identifier] = record
            return True

    async def put(self, record: EscalationRecord) -> None:
        async with self._lock:
            self._ensure_capacity(record.identifier)
            self._records[record.identifier] = record

    async def get(self, identifier: str) -> EscalationRecord | None:
        async with self._lock:
            return self._records.get(identifier)

    async def release(self, identifier: str) -> None:
        async with self._lock:
            self._records.pop(identifier, None)


class RedisEscalationStore(EscalationStore):
    """Shared store for multi-process deployments, using SET NX EX for the claim."""

    def __init__(self, url: str, key_prefix: str, window_seconds: int, max_connections: int = 20):
        super().__init__(window_seconds)
        self.url = url
        self.key_prefix = key_prefix
        self.max_connections = max_connections
        self._client: redis.Redis | None = None

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            logger.info("Creating Redis client for RedisEscalationStore")
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=self.max_connections,
                health_check_interval=30,
            )
        return self._client

    def _format_key(self, identifier: str) -> str:
        return ESCALATION_KEY.format(prefix=self.key_prefix, identifier=identifier)

    async def claim(self, record: EscalationRecord) -> bool:
        try:
            client = await self.get_client()
            result = await client.set(
                self._format_key(record.identifier), record.model_dump_json(), nx=True, ex=self.window_seconds
            )
        except (redis.RedisError, OSError) as exc:
            raise AlertDeliveryError(f"Escalation store unavailable: {exc}") from exc
        return bool(result)

    async def put(self, record: EscalationRecord) -> None:
        try:
            client = await self.get_client()
            await client.set(self._format_key(record.identifier), record.model_dump_json(), ex=self.window_seconds)
        except (redis.RedisError, OSError) as exc:
            raise AlertDeliveryError(f"Escalation store unavailable: {exc}") from exc

    async def get(self, identifier: str) -> EscalationRecord | None:
        try:
            client = await self.get_client()
            raw = await client.get(self._format_key(identifier))
        except (redis.RedisError, OSError) as exc:
            raise AlertDeliveryError(f"Escalation store unavailable: {exc}") from exc
        if not raw:
            return None
        try:
            return EscalationRecord.model_validate_json(raw)
        except ValidationError:
            return None

    async def release(self, identifier: str) -> None:
        try:
            client = await self.get_client()
            await client.delete(self._format_key(identifier))
        except (redis.RedisError, OSError) as exc:
            logger.warning(f"Failed to release escalation marker: {exc}")

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
                logger.info("RedisEscalationStore client closed")
            except Exception as exc:
                logger.warning(f"Failed to close RedisEscalationStore client: {exc}")
            finally:
                self._client = None
