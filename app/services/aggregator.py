import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from app.core.errors import ErrorKind, StageError
from app.core.security import redact_identifier
from app.models.record import CombinedRecord, SourceFailure
from app.services.sources.base import SourceConnector

# Kinds a connector may legitimately report; anything else counts as unavailable
SOURCE_KINDS = {ErrorKind.TIMEOUT, ErrorKind.SOURCE_UNAVAILABLE, ErrorKind.INVALID_IDENTIFIER}


class AggregationError(StageError):
    """Every connector failed for the identifier."""

    def __init__(self, identifier: str, failures: list[SourceFailure]):
        kinds = {f.kind for f in failures}
        kind = next(iter(kinds)) if len(kinds) == 1 else ErrorKind.SOURCE_UNAVAILABLE
        if failures:
            message = f"All {len(failures)} sources failed: " + ", ".join(f"{f.source}={f.kind.value}" for f in failures)
        else:
            message = "No sources configured"
        super().__init__(message, kind=kind)
        self.identifier = identifier
        self.failures = failures


class Aggregator:
    """
    Fans out to a set of connectors concurrently and merges what comes back.

    Each connector gets its own deadline. Individual failures are recorded
    on the combined record; the aggregation only fails when nothing succeeds.
    There are no retries here.
    """

    def __init__(self, timeout: float = 10.0):
        if timeout <= 0:
            raise ValueError("Source timeout must be positive")
        self.timeout = timeout

    async def aggregate(
        self, identifier: str, connectors: Sequence[SourceConnector]
    ) -> tuple[CombinedRecord, list[SourceFailure]]:
        names = [c.name for c in connectors]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate source names in {names}")

        # Process all connectors in parallel
        results = await asyncio.gather(*(self._fetch_one(c, identifier) for c in connectors))

        record = CombinedRecord(identifier=identifier)
        failures: list[SourceFailure] = []
        for connector, (partial, failure) in zip(connectors, results):
            if failure is not None:
                failures.append(failure)
                continue
            record.add_source(connector.name, partial)
        record.failures = list(failures)

        if record.is_empty:
            logger.warning(f"[{redact_identifier(identifier)}] Aggregation failed: no source succeeded")
            raise AggregationError(identifier, failures)

        if failures:
            logger.warning(
                f"[{redact_identifier(identifier)}] Partial aggregation: "
                f"{len(record.succeeded)} ok, {len(failures)} failed ({', '.join(f.source for f in failures)})"
            )
        else:
            logger.debug(f"[{redact_identifier(identifier)}] Aggregated {len(record.succeeded)} sources")
        return record, failures

    async def _fetch_one(
        self, connector: SourceConnector, identifier: str
    ) -> tuple[dict[str, Any] | None, SourceFailure | None]:
        try:
            partial = await asyncio.wait_for(connector.fetch(identifier), timeout=self.timeout)
        except asyncio.TimeoutError:
            return None, SourceFailure(
                source=connector.name, kind=ErrorKind.TIMEOUT, message=f"No response within {self.timeout}s"
            )
        except StageError as exc:
            kind = exc.kind if exc.kind in SOURCE_KINDS else ErrorKind.SOURCE_UNAVAILABLE
            return None, SourceFailure(source=connector.name, kind=kind, message=exc.message)
        except Exception as exc:
            logger.exception(f"Source '{connector.name}' raised unexpectedly: {exc}")
            return None, SourceFailure(source=connector.name, kind=ErrorKind.SOURCE_UNAVAILABLE, message=str(exc))

        if not isinstance(partial, Mapping):
            return None, SourceFailure(
                source=connector.name,
                kind=ErrorKind.SOURCE_UNAVAILABLE,
                message=f"Expected a mapping, got {type(partial).__name__}",
            )
        return dict(partial), None
