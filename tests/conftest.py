"""Shared fixtures: in-memory fleet database, fixed clock, recording channels."""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "fleetbot_test.log"))

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from fleetbot.db import init_db
from fleetbot.journeys import JourneyQuery
from fleetbot.models import Journey, Vehicle, VehicleStatus
from fleetbot.notify import Notifier
from fleetbot.sessions import Role, SessionStore
from fleetbot.store import FleetStore
from fleetbot.workflows import Workflows

ADMIN_CHAT = 999
ADMIN_OPERATOR = 1


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeChannel:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    async def send(self, chat_id, text) -> bool:
        self.sent.append((chat_id, text))
        return self.ok


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def store(engine):
    return FleetStore(engine)


@pytest.fixture
def fleet(store):
    for name in ("Van1", "Van2"):
        store.add_vehicle(name)
    for name in ("Clinic", "Depot", "Warehouse"):
        store.add_destination(name)
    return SimpleNamespace(
        alice=store.create_user("Alice", 111),
        bob=store.create_user("Bob", 222),
        carol=store.create_user("Carol"),  # прокси, без Telegram
    )


@pytest.fixture
def clock():
    return Clock(datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def channels():
    return SimpleNamespace(users=FakeChannel(), admins=FakeChannel())


@pytest.fixture
def sessions(clock):
    return SessionStore(ttl_seconds=3600, clock=clock)


@pytest.fixture
def notifier(channels):
    return Notifier(channels.users, channels.admins, admin_chat_id=ADMIN_CHAT)


@pytest.fixture
def admin(store, sessions, notifier, clock):
    return Workflows(Role.administrator, store, sessions, notifier, JourneyQuery(store, "UTC", clock), clock)


@pytest.fixture
def employee(store, sessions, notifier, clock):
    return Workflows(Role.self_service, store, sessions, notifier, JourneyQuery(store, "UTC", clock), clock)


async def admin_assign(workflows, vehicle, user, destination, operator=ADMIN_OPERATOR):
    workflows.assignment.begin(operator)
    workflows.assignment.select_vehicle(operator, vehicle)
    workflows.assignment.select_assignee(operator, user.id)
    return await workflows.assignment.select_destination(operator, destination)


def all_journeys(engine):
    with Session(engine) as session:
        return list(session.exec(select(Journey).order_by(Journey.id)).all())


def assert_fleet_consistent(store):
    """Vehicle status matches its owner fields; nobody holds two vehicles."""
    owners = []
    for v in store.list_vehicles():
        owned = (
            v.assigned_user_id is not None
            and v.current_destination is not None
            and v.assigned_at is not None
        )
        assert (v.status == VehicleStatus.in_use) == owned, v
        if v.status == VehicleStatus.in_use:
            owners.append(v.assigned_user_id)
    assert len(owners) == len(set(owners))


def force_vehicle(engine, name, **values):
    with Session(engine) as session:
        vehicle = session.get(Vehicle, name)
        for key, value in values.items():
            setattr(vehicle, key, value)
        session.add(vehicle)
        session.commit()
