"""Tests for the remote data gateway: retries, error classification, circuit breaker."""
import asyncio

from marshmallow import ValidationError as SchemaValidationError
from sqlalchemy import exc as sa_exc

from agency_console.errors import (
    ConflictError,
    describe_error,
    NotFoundError,
    PermissionDeniedError,
    TransientIOError,
    ValidationError,
)
from agency_console.gateway import (
    AGENCIES,
    PHOTOS,
    SERVICES,
    CircuitBreaker,
    RemoteDataGateway,
    normalize_error,
)


def test_reads_are_retried_on_transient_failures(backend, gateway, sleeps) -> None:
    backend.seed(SERVICES, agency_id=1, name="Home care")
    backend.fail("select", SERVICES, ConnectionError("reset"), TimeoutError("slow"))

    result = asyncio.run(gateway.fetch_collection(SERVICES, {"agency_id": 1}))

    assert result.ok
    assert [row["name"] for row in result.value] == ["Home care"]
    assert backend.count("select", SERVICES) == 3
    # exponential backoff: 0.5, then 1.0
    assert sleeps == [0.5, 1.0]


def test_reads_give_up_after_max_attempts(backend, gateway) -> None:
    backend.fail("select", SERVICES, *[ConnectionError("down")] * 5)

    result = asyncio.run(gateway.fetch_collection(SERVICES, {"agency_id": 1}))

    assert isinstance(result.error, TransientIOError)
    assert backend.count("select", SERVICES) == 3


def test_permanent_failures_are_not_retried(backend, gateway, sleeps) -> None:
    backend.fail("select", SERVICES, PermissionDeniedError("row level security"))

    result = asyncio.run(gateway.fetch_collection(SERVICES))

    assert isinstance(result.error, PermissionDeniedError)
    assert backend.count("select", SERVICES) == 1
    assert sleeps == []


def test_writes_are_not_retried(backend, gateway) -> None:
    backend.fail("insert", SERVICES, ConnectionError("reset"))

    result = asyncio.run(gateway.insert(SERVICES, {"agency_id": 1, "name": "x"}))

    assert isinstance(result.error, TransientIOError)
    assert backend.count("insert", SERVICES) == 1
    assert backend.tables[SERVICES] == []


def test_fetch_one_reports_missing_rows(gateway) -> None:
    result = asyncio.run(gateway.fetch_one(AGENCIES, 42))
    assert isinstance(result.error, NotFoundError)


def test_update_of_missing_row_is_not_found(gateway) -> None:
    result = asyncio.run(gateway.update(AGENCIES, 42, {"name": "x"}))
    assert isinstance(result.error, NotFoundError)


def test_removing_a_missing_row_succeeds(backend, gateway) -> None:
    row = backend.seed(SERVICES, agency_id=1, name="Home care")

    first = asyncio.run(gateway.remove(SERVICES, row["id"]))
    second = asyncio.run(gateway.remove(SERVICES, row["id"]))

    assert first.ok and second.ok
    assert backend.tables[SERVICES] == []


def test_update_matching_returns_row_count(backend, gateway) -> None:
    backend.seed("agency_photos", agency_id=1, url="/a", is_cover=True)
    backend.seed("agency_photos", agency_id=1, url="/b", is_cover=False)
    backend.seed("agency_photos", agency_id=2, url="/c", is_cover=True)

    result = asyncio.run(gateway.update_matching("agency_photos", {"agency_id": 1}, {"is_cover": False}))

    assert result.value == 2
    assert [row["is_cover"] for row in backend.tables["agency_photos"]] == [False, False, True]


def test_normalize_error_classification() -> None:
    operational = sa_exc.OperationalError("SELECT 1", {}, Exception("gone away"))
    integrity = sa_exc.IntegrityError("INSERT", {}, Exception("UNIQUE"))
    schema_error = SchemaValidationError({"rating": ["Must be between 1 and 5."]})

    assert isinstance(normalize_error(operational), TransientIOError)
    assert isinstance(normalize_error(ConnectionError()), TransientIOError)
    assert isinstance(normalize_error(integrity), ConflictError)
    validation = normalize_error(schema_error)
    assert isinstance(validation, ValidationError)
    assert validation.fields == {"rating": ["Must be between 1 and 5."]}
    assert not isinstance(normalize_error(KeyError("x")), TransientIOError)


def test_circuit_breaker_fails_fast_then_recovers(backend) -> None:
    now = [0.0]

    async def no_sleep(delay: float) -> None:
        return None

    gateway = RemoteDataGateway(
        backend,
        max_attempts=2,
        backoff=0,
        jitter=0,
        breaker_factory=lambda kind: CircuitBreaker(kind, threshold=2, cooldown=30, clock=lambda: now[0]),
        sleep=no_sleep,
    )
    backend.fail("select", SERVICES, ConnectionError(), ConnectionError())

    assert isinstance(asyncio.run(gateway.fetch_collection(SERVICES)).error, TransientIOError)
    breaker = gateway.breaker_for(SERVICES)
    assert breaker.is_open

    # open: the backend is not called at all
    calls = backend.count("select", SERVICES)
    assert isinstance(asyncio.run(gateway.fetch_collection(SERVICES)).error, TransientIOError)
    assert backend.count("select", SERVICES) == calls

    now[0] = 31.0
    assert asyncio.run(gateway.fetch_collection(SERVICES)).ok
    assert not breaker.is_open


def test_user_facing_messages_hide_internals() -> None:
    assert describe_error(TransientIOError("Connection issue: OperationalError")).startswith(
        "Service is temporarily unavailable"
    )
    assert describe_error(NotFoundError("")) == "No data found."
    assert describe_error(ConflictError("Review 3 already has a response.")) == "Review 3 already has a response."
    assert describe_error(KeyError("secret")) == "An unexpected error occurred. Please try again later."


def test_an_open_circuit_only_affects_its_own_collection(backend, gateway) -> None:
    agency = backend.seed(AGENCIES, name="Sunrise Care")
    backend.seed(SERVICES, agency_id=agency["id"], name="Home care")
    backend.fail("select", PHOTOS, *[ConnectionError("reset")] * 3)

    assert isinstance(asyncio.run(gateway.fetch_collection(PHOTOS)).error, TransientIOError)
    assert gateway.breaker_for(PHOTOS).is_open

    assert asyncio.run(gateway.fetch_collection(SERVICES)).ok
    assert asyncio.run(gateway.fetch_one(AGENCIES, agency["id"])).ok
    assert not gateway.breaker_for(SERVICES).is_open


def test_scoped_remove_leaves_rows_outside_the_scope(backend, gateway) -> None:
    row = backend.seed(SERVICES, agency_id=2, name="Night nursing")

    result = asyncio.run(gateway.remove(SERVICES, row["id"], scope={"agency_id": 1}))

    assert result.ok
    assert backend.row(SERVICES, row["id"])["name"] == "Night nursing"
