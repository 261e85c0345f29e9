"""Remote data gateway.

Typed CRUD accessors over the agency collections, wrapping the backend
with the retry policy and error normalisation the rest of the console
relies on:

* reads are retried with exponential backoff and jitter while the
  failure is transient (network/timeout classes);
* permanent failures (validation, permission, not found, conflict)
  surface on the first attempt;
* each collection has its own circuit breaker, which fails fast for a
  cooldown window once too many consecutive transient failures have
  been seen reading or writing that collection;
* removing a row that no longer exists counts as success, since the end
  state is the same.

No method raises. Every operation returns a ``Result``.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Mapping, Optional

from marshmallow import ValidationError as SchemaValidationError
from sqlalchemy import exc as sa_exc

from ..errors import (
    ConsoleError,
    ConflictError,
    NotFoundError,
    PermanentRemoteError,
    TransientIOError,
    ValidationError,
)
from .backend import UnknownCollectionError
from .result import Result

logger = logging.getLogger(__name__)

AGENCIES = "agencies"
SERVICES = "agency_services"
PHOTOS = "agency_photos"
REVIEWS = "reviews"
RESPONSES = "review_responses"

_TRANSIENT_TYPES = (
    sa_exc.OperationalError,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
    ConnectionError,
    TimeoutError,
)


def normalize_error(error: BaseException) -> ConsoleError:
    """Classify a backend exception into the console's error taxonomy."""
    if isinstance(error, ConsoleError):
        return error
    if isinstance(error, _TRANSIENT_TYPES):
        return TransientIOError(f"Connection issue: {error.__class__.__name__}")
    if isinstance(error, sa_exc.IntegrityError):
        return ConflictError("This operation conflicts with existing data.")
    if isinstance(error, SchemaValidationError):
        return ValidationError("The submitted data is invalid.", error.normalized_messages())
    if isinstance(error, UnknownCollectionError):
        return PermanentRemoteError(str(error))
    if isinstance(error, (sa_exc.SQLAlchemyError, AttributeError)):
        return PermanentRemoteError(f"Invalid query: {error.__class__.__name__}")
    return PermanentRemoteError(f"Unexpected error: {error.__class__.__name__}")


class CircuitBreaker:
    """Counts consecutive transient failures and opens after ``threshold``."""

    def __init__(
        self,
        name: str = "gateway",
        threshold: int = 3,
        cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        if self._clock() - self._opened_at >= self.cooldown:
            logger.info("Circuit for %s closed after %.0fs cooldown", self.name, self.cooldown)
            self._opened_at = None
            self._failures = 0
            return False
        return True

    def record_success(self) -> None:
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.threshold and self._opened_at is None:
            logger.warning(
                "Circuit for %s opened after %d consecutive transient failures", self.name, self._failures
            )
            self._opened_at = self._clock()


class RemoteDataGateway:
    """Result-returning CRUD over the agency collections."""

    def __init__(
        self,
        backend,
        max_attempts: int = 3,
        backoff: float = 1.0,
        jitter: float = 1.0,
        breaker_factory: Callable[[str], CircuitBreaker] = CircuitBreaker,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.jitter = jitter
        self._breaker_factory = breaker_factory
        self.breakers: dict[str, CircuitBreaker] = {}
        self._sleep = sleep

    @classmethod
    def from_config(cls, backend, config: Mapping[str, Any]) -> "RemoteDataGateway":
        return cls(
            backend,
            max_attempts=config.get("GATEWAY_MAX_ATTEMPTS", 3),
            backoff=config.get("GATEWAY_BACKOFF_SECONDS", 1.0),
            jitter=config.get("GATEWAY_BACKOFF_JITTER_SECONDS", 1.0),
            breaker_factory=lambda kind: CircuitBreaker(
                kind,
                threshold=config.get("GATEWAY_CIRCUIT_THRESHOLD", 3),
                cooldown=config.get("GATEWAY_CIRCUIT_COOLDOWN_SECONDS", 30),
            ),
        )

    def breaker_for(self, kind: str) -> CircuitBreaker:
        if kind not in self.breakers:
            self.breakers[kind] = self._breaker_factory(kind)
        return self.breakers[kind]

    async def _call(
        self, kind: str, operation: str, call: Callable[[], Awaitable[Any]], retry: bool
    ) -> Result:
        breaker = self.breaker_for(kind)
        attempts = self.max_attempts if retry else 1
        error: ConsoleError = TransientIOError("Service temporarily unavailable. Please try again later.")
        for attempt in range(1, attempts + 1):
            if breaker.is_open:
                return Result.failure(
                    TransientIOError("Service temporarily unavailable. Please try again later.")
                )
            try:
                value = await call()
            except Exception as raw:  # classified below; never escapes the gateway
                error = normalize_error(raw)
                if not isinstance(error, TransientIOError):
                    logger.info("%s failed: %s", operation, error.message)
                    return Result.failure(error)
                breaker.record_failure()
                if attempt < attempts:
                    delay = self.backoff * (2 ** (attempt - 1)) + random.uniform(0, self.jitter)
                    logger.warning(
                        "%s failed (%s), retry %d/%d in %.2fs",
                        operation, error.message, attempt, attempts - 1, delay,
                    )
                    await self._sleep(delay)
                continue
            breaker.record_success()
            return Result.success(value)
        logger.warning("%s gave up after %d attempt(s): %s", operation, attempts, error.message)
        return Result.failure(error)

    async def fetch_collection(
        self,
        kind: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Result[list]:
        return await self._call(
            kind,
            f"fetch {kind}",
            lambda: self.backend.select(kind, filters, order_by, descending),
            retry=True,
        )

    async def fetch_one(self, kind: str, entity_id: int) -> Result[dict]:
        result = await self.fetch_collection(kind, {"id": entity_id})
        if not result.ok:
            return result
        if not result.value:
            return Result.failure(NotFoundError(f"No {kind} record with id {entity_id}."))
        return Result.success(result.value[0])

    async def insert(self, kind: str, values: Mapping[str, Any]) -> Result[dict]:
        return await self._call(kind, f"insert {kind}", lambda: self.backend.insert(kind, values), retry=False)

    async def update(self, kind: str, entity_id: int, patch: Mapping[str, Any]) -> Result[None]:
        result = await self._call(
            kind,
            f"update {kind}/{entity_id}",
            lambda: self.backend.update(kind, {"id": entity_id}, patch),
            retry=False,
        )
        if result.ok and result.value == 0:
            return Result.failure(NotFoundError(f"No {kind} record with id {entity_id}."))
        return Result.success() if result.ok else result

    async def update_matching(
        self, kind: str, filters: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> Result[int]:
        return await self._call(
            kind,
            f"update {kind} where {dict(filters)}",
            lambda: self.backend.update(kind, filters, patch),
            retry=False,
        )

    async def remove(
        self, kind: str, entity_id: int, scope: Optional[Mapping[str, Any]] = None
    ) -> Result[None]:
        """Delete one row. ``scope`` adds filters the row must also match, such as its owning agency."""
        filters = {**(scope or {}), "id": entity_id}
        result = await self._call(
            kind,
            f"remove {kind}/{entity_id}",
            lambda: self.backend.delete(kind, filters),
            retry=False,
        )
        if result.ok and result.value == 0:
            logger.debug("remove %s/%s: already gone", kind, entity_id)
        if result.ok or isinstance(result.error, NotFoundError):
            return Result.success()
        return result
