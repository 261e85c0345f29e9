"""Shared fixtures for the Agency Console tests.

Two kinds of fixtures live here:

* a Flask application backed by an in-memory SQLite database, with a
  test client and helpers to create users and log them in;
* an in-memory async backend with failure injection and gates, used to
  drive the gateway, loader and console through precise orderings
  (late responses, partial failures, timeouts) without a database.
"""
from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict

import pytest
from sqlalchemy import exc as sa_exc

from agency_console import create_app, db
from agency_console.gateway import PHOTOS, RESPONSES, RemoteDataGateway
from agency_console.models import Role, User
from agency_console.services import Actor, AdminConsole
from agency_console.services.storage import AssetStorage


# -- in-memory backend --------------------------------------------------------


class Gate:
    """Holds matching backend calls until released."""

    def __init__(self, op: str, collection: str, match: dict) -> None:
        self.op = op
        self.collection = collection
        self.match = match
        self.reached = asyncio.Event()
        self.released = asyncio.Event()

    def matches(self, op: str, collection: str, filters) -> bool:
        filters = filters or {}
        return (
            op == self.op
            and collection == self.collection
            and all(filters.get(key) == value for key, value in self.match.items())
        )

    def release(self) -> None:
        self.released.set()


class InMemoryBackend:
    """Async stand-in for ``SqlAlchemyBackend`` keeping rows in lists of dicts."""

    def __init__(self) -> None:
        self.tables = defaultdict(list)
        self.calls = []
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)
        self._failures = defaultdict(list)
        self._gates = []

    # setup helpers

    def seed(self, collection: str, **values) -> dict:
        row = dict(values)
        row.setdefault("id", next(self._ids))
        row.setdefault("created_at", next(self._clock))
        self.tables[collection].append(row)
        return dict(row)

    def fail(self, op: str, collection: str, *errors, after: int = 0) -> None:
        """Raise ``errors`` on the next calls of ``op``, skipping ``after`` calls first."""
        self._failures[(op, collection)].extend([None] * after + list(errors))

    def hold(self, op: str, collection: str, **match) -> Gate:
        gate = Gate(op, collection, match)
        self._gates.append(gate)
        return gate

    def row(self, collection: str, row_id: int) -> dict:
        return next(row for row in self.tables[collection] if row["id"] == row_id)

    def count(self, op: str, collection: str) -> int:
        return sum(1 for call in self.calls if call[:2] == (op, collection))

    # backend protocol

    async def _enter(self, op: str, collection: str, filters) -> None:
        self.calls.append((op, collection, dict(filters or {})))
        for gate in list(self._gates):
            if gate.matches(op, collection, filters):
                gate.reached.set()
                await gate.released.wait()
        queued = self._failures.get((op, collection))
        if queued:
            error = queued.pop(0)
            if error is not None:
                raise error

    @staticmethod
    def _matches(row: dict, filters) -> bool:
        for key, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if row.get(key) not in value:
                    return False
            elif row.get(key) != value:
                return False
        return True

    def _check_constraints(self, collection: str, rows: list) -> None:
        if collection == PHOTOS:
            covers = [row["agency_id"] for row in rows if row.get("is_cover")]
            if len(covers) != len(set(covers)):
                raise sa_exc.IntegrityError("UPDATE agency_photos", {}, Exception("uix_agency_cover_photo"))
        if collection == RESPONSES:
            review_ids = [row["review_id"] for row in rows]
            if len(review_ids) != len(set(review_ids)):
                raise sa_exc.IntegrityError("INSERT review_responses", {}, Exception("UNIQUE review_id"))

    async def select(self, collection, filters=None, order_by=None, descending=False):
        await self._enter("select", collection, filters)
        rows = [dict(row) for row in self.tables[collection] if self._matches(row, filters)]
        rows.sort(key=lambda row: row["id"])
        if order_by:
            rows.sort(key=lambda row: row[order_by], reverse=descending)
        return rows

    async def insert(self, collection, values):
        await self._enter("insert", collection, None)
        row = dict(values, id=next(self._ids), created_at=next(self._clock))
        self._check_constraints(collection, self.tables[collection] + [row])
        self.tables[collection].append(row)
        return dict(row)

    async def update(self, collection, filters, patch):
        await self._enter("update", collection, filters)
        updated = [
            dict(row, **patch) if self._matches(row, filters) else row
            for row in self.tables[collection]
        ]
        self._check_constraints(collection, updated)
        count = sum(1 for row in self.tables[collection] if self._matches(row, filters))
        self.tables[collection] = updated
        return count

    async def delete(self, collection, filters):
        await self._enter("delete", collection, filters)
        kept = [row for row in self.tables[collection] if not self._matches(row, filters)]
        count = len(self.tables[collection]) - len(kept)
        self.tables[collection] = kept
        return count


class RecordingNotifier:
    """Collects notifications instead of sending them."""

    def __init__(self) -> None:
        self.sent = []

    def notify(self, template, to, data):
        self.sent.append((template, to, dict(data)))
        return None


SUPER_ADMIN = Actor(user_id=1, role=Role.SUPER_ADMIN, email="admin@example.com")
OWNER = Actor(user_id=2, role=Role.AGENCY_ADMIN, email="owner@example.com")


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def gateway(backend, sleeps) -> RemoteDataGateway:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return RemoteDataGateway(backend, max_attempts=3, backoff=0.5, jitter=0, sleep=record_sleep)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def storage(tmp_path) -> AssetStorage:
    return AssetStorage(tmp_path / "uploads")


@pytest.fixture
def make_console(gateway, notifier, storage):
    """Factory for consoles sharing the test gateway and collaborators."""

    def make(actor: Actor = SUPER_ADMIN, load_timeout: float = 5.0) -> AdminConsole:
        return AdminConsole(
            gateway,
            actor,
            notifier=notifier,
            storage=storage,
            admin_email="admin@example.com",
            load_timeout=load_timeout,
        )

    return make


@pytest.fixture
def agency(backend) -> dict:
    """A verified agency owned by ``OWNER`` with two services and one pending review."""
    row = backend.seed(
        "agencies",
        name="Sunrise Care",
        owner_id=OWNER.user_id,
        status="approved",
        is_verified=True,
        trust_score=0,
        brochure_url=None,
    )
    backend.seed("agency_services", agency_id=row["id"], name="Home care")
    backend.seed("agency_services", agency_id=row["id"], name="Respite care")
    backend.seed(
        "reviews",
        agency_id=row["id"],
        user_id=5,
        user_email="reviewer@example.com",
        rating=4,
        content="Very helpful.",
        status="pending",
    )
    return row


# -- Flask application --------------------------------------------------------


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
            "GATEWAY_BACKOFF_SECONDS": 0,
            "GATEWAY_BACKOFF_JITTER_SECONDS": 0,
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "ADMIN_NOTIFICATION_EMAIL": "admin@example.com",
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def create_user(app):
    """Insert a user directly, bypassing the self-service role check."""

    def create(email: str, role: Role = Role.USER, password: str = "password") -> User:
        user = User(email=email, full_name=email.split("@")[0].title(), role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return create


@pytest.fixture
def login(client):
    """Log a user in and return the ``Authorization`` header."""

    def do_login(email: str, password: str = "password") -> dict:
        response = client.post("/api/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.get_json()
        return {"Authorization": f"Bearer {response.get_json()['access_token']}"}

    return do_login


@pytest.fixture
def owner() -> Actor:
    """The agency admin owning the ``agency`` fixture."""
    return OWNER
