"""
Shared fixtures. Everything runs on SQLite; no Postgres, Redis or SMTP
needed.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roombook.audit.recorder import AuditRecorder
from roombook.booking.lifecycle import BookingService
from roombook.cache.store import InMemoryCache
from roombook.config import Settings
from roombook.models import Base, Role, Room, User
from roombook.notify.dispatcher import Notifier
from roombook.store import BookingStore


def at(hour: int, minute: int = 0, day: int = 5) -> datetime:
    """Naive UTC timestamp on 2024-01-<day>."""
    return datetime(2024, 1, day, hour, minute)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return BookingStore(db)


@pytest.fixture
def people(db):
    users = {
        "student": User(id="u-student", name="Sam Student", email="sam@uni.edu", role=Role.STUDENT),
        "faculty": User(id="u-faculty", name="Fay Faculty", email="fay@uni.edu", role=Role.FACULTY),
        "admin": User(id="u-admin", name="Ada Admin", email="ada@uni.edu", role=Role.ADMIN),
        "other": User(id="u-other", name="Olly Other", email="olly@uni.edu", role=Role.STUDENT),
    }
    db.add_all(users.values())
    db.commit()
    return {k: u.id for k, u in users.items()}


@pytest.fixture
def rooms(db):
    rooms = {
        "open": Room(id="r-open", name="Seminar 1", building="Main", capacity=20,
                     equipment=["projector"]),
        "restricted": Room(id="r-lab", name="Research Lab", building="Science",
                           capacity=8, restricted_roles=["FACULTY", "ADMIN"]),
        "locked": Room(id="r-locked", name="Exam Hall", capacity=200, is_locked=True),
        "inactive": Room(id="r-old", name="Old Annex", capacity=10, is_active=False),
    }
    db.add_all(rooms.values())
    db.commit()
    return {k: r.id for k, r in rooms.items()}


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", auto_approve=True)


@pytest.fixture
def notifier(session_factory, settings):
    return Notifier(session_factory, settings, synchronous=True)


@pytest.fixture
def auditor(session_factory):
    return AuditRecorder(session_factory)


@pytest.fixture
def service(store, cache, notifier, auditor, settings, people, rooms):
    return BookingService(store, cache=cache, notifier=notifier,
                          auditor=auditor, settings=settings)


@pytest.fixture
def approval_service(store, cache, notifier, auditor, people, rooms):
    """Requests stay PENDING until an admin decides."""
    return BookingService(store, cache=cache, notifier=notifier, auditor=auditor,
                          settings=Settings(database_url="sqlite://", auto_approve=False))
