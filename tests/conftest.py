"""
Pytest configuration for booking and notification tests
"""

import os
import sys
from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

# Keep imports away from any developer database or mail setup
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.pop("SMTP_HOST", None)

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from carehealth.clock import FixedClock  # noqa: E402
from carehealth.database import Base, build_engine  # noqa: E402
from carehealth.domain.appointments.service import BookingService  # noqa: E402
from carehealth.errors import TransportError  # noqa: E402
from carehealth.jobs import InMemoryQueueBackend, JobQueue  # noqa: E402
from carehealth.locks import InMemoryLockBackend, LockService  # noqa: E402
from carehealth.models import Patient, Pharmacy, User  # noqa: E402

NOW = datetime(2030, 1, 1, 8, 0)


class FakeNotifier:
    """Records every send; fails the first ``fail_times`` calls (or all, with -1)"""

    def __init__(self, fail_times: int = 0, error: Exception = None):
        self.fail_times = fail_times
        self.error = error
        self.calls = 0
        self.sent = []

    def send(self, to, subject, body):
        self.calls += 1
        if self.fail_times == -1 or self.calls <= self.fail_times:
            raise self.error or TransportError("SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body})


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'carehealth.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def lock_backend():
    return InMemoryLockBackend()


@pytest.fixture
def locks(lock_backend):
    return LockService(lock_backend)


@pytest.fixture
def queue():
    return JobQueue(InMemoryQueueBackend())


@pytest.fixture
def booking(db, locks, queue, clock):
    return BookingService(db, locks, queue, clock=clock)


@pytest.fixture
def notifier():
    return FakeNotifier()


def _add(db, record):
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def doctor(db):
    return _add(
        db,
        User(email="house@carehealth.test", first_name="Gregory", last_name="House", role="doctor"),
    )


@pytest.fixture
def other_doctor(db):
    return _add(
        db,
        User(email="wilson@carehealth.test", first_name="James", last_name="Wilson", role="doctor"),
    )


@pytest.fixture
def patient(db):
    return _add(db, Patient(email="jane.doe@example.com", first_name="Jane", last_name="Doe"))


@pytest.fixture
def other_patient(db):
    return _add(db, Patient(email="john.roe@example.com", first_name="John", last_name="Roe"))


@pytest.fixture
def pharmacy(db):
    return _add(db, Pharmacy(name="Main Street Pharmacy"))


@pytest.fixture
def add_record(db):
    """Persist an arbitrary model instance"""
    return lambda record: _add(db, record)
