from abc import ABC, abstractmethod
from collections.abc import Iterable

from loguru import logger

from app.core.errors import ComplianceDeniedError


class ComplianceGate(ABC):
    """
    Interface for the blocking check that an operation is permitted.

    Returns normally when allowed and raises ``ComplianceDeniedError`` when
    not. Infrastructure problems raise other ``StageError`` kinds.
    """

    @abstractmethod
    async def check(self, operation: str) -> None:
        pass


class PolicyComplianceGate(ComplianceGate):
    """Allowlist of operation names, optionally narrowed by an explicit denylist."""

    def __init__(self, allowed: Iterable[str], denied: Iterable[str] = ()):
        self.allowed = frozenset(allowed)
        self.denied = frozenset(denied)

    async def check(self, operation: str) -> None:
        if operation in self.denied or operation not in self.allowed:
            logger.warning(f"Compliance denied operation '{operation}'")
            raise ComplianceDeniedError(f"Operation '{operation}' is not permitted")
        logger.debug(f"Compliance allowed operation '{operation}'")
