from abc import ABC, abstractmethod

import httpx
from loguru import logger

from app.core.base_client import BaseClient
from app.core.errors import DeploymentError
from app.core.security import redact_identifier
from app.models.record import SecuredRecord


class AssetDeployer(ABC):
    """
    Downstream side effect wired to escalation for some operations.

    Receives the secured record only; it is never interpreted here.
    """

    @abstractmethod
    async def deploy(self, record: SecuredRecord) -> None:
        pass

    async def close(self) -> None:
        return None


class LogAssetDeployer(AssetDeployer):
    async def deploy(self, record: SecuredRecord) -> None:
        logger.info(f"[{redact_identifier(record.identifier)}] Asset deployment requested ({record.scheme} record)")


class WebhookAssetDeployer(AssetDeployer):
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self._client = BaseClient(timeout=timeout, max_retries=2)

    async def deploy(self, record: SecuredRecord) -> None:
        try:
            await self._client.post(self.url, json=record.model_dump(mode="json"))
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            raise DeploymentError(f"Deployment webhook failed: {exc}") from exc
        except ValueError:
            # Delivered; non-JSON acknowledgement
            pass

    async def close(self) -> None:
        await self._client.close()
