"""Pytest configuration and shared fixtures."""

import os

# Settings are read once and cached; point them at SQLite before any import.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from shopinspect.core.config import Settings
from shopinspect.core.workflow.actions import ActionDispatcher, QueuedAction
from shopinspect.core.workflow.engine import WorkflowEngine
from shopinspect.core.workflow.history import WorkflowHistoryReader
from shopinspect.db.base import Base
import shopinspect.db.models  # noqa: F401  (register all tables)

from tests import factories


class FrozenClock:
    """Deterministic replacement for ``datetime.utcnow``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Notifier that keeps every queued action it receives."""

    def __init__(self, fail: bool = False):
        self.sent: List[QueuedAction] = []
        self.fail = fail

    def send(self, queued: QueuedAction) -> None:
        if self.fail:
            raise ConnectionError("SMS gateway unreachable")
        self.sent.append(queued)

    @property
    def actions(self) -> List[str]:
        return [q.action.value for q in self.sent]


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        statistics_window_days=30,
        bottleneck_threshold_multiple=1.5,
    )


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite database, one per test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'shopinspect.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 2, 8, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(session_factory, notifier, clock):
    """Workflow engine wired to the test database."""
    return WorkflowEngine(
        session_factory,
        dispatcher=ActionDispatcher(notifier),
        clock=clock,
    )


@pytest.fixture
def history_reader(session_factory, settings, clock):
    return WorkflowHistoryReader(session_factory, settings=settings, clock=clock)


@pytest.fixture
def shop(db_session):
    """A shop with one user per role and a customer with a vehicle, committed."""
    shop = factories.create_shop(db_session, name="Main Street Auto")
    technician = factories.create_user(db_session, shop=shop, role="technician", name="Tess Tech")
    manager = factories.create_user(db_session, shop=shop, role="shop_manager", name="Max Manager")
    admin = factories.create_user(db_session, shop=shop, role="admin", name="Ada Admin")
    customer = factories.create_customer(db_session, shop=shop, phone="+15555550100")
    vehicle = factories.create_vehicle(db_session, shop=shop, customer=customer)
    db_session.commit()
    return SimpleNamespace(
        shop=shop,
        id=shop.id,
        technician=technician,
        manager=manager,
        admin=admin,
        customer=customer,
        vehicle=vehicle,
    )


@pytest.fixture
def make_inspection(db_session, shop):
    """Create and commit an inspection in the given state with scored items."""

    def _make(state="draft", conditions=("good",), vehicle=None, version=1, **kwargs):
        inspection = factories.create_inspection(
            db_session,
            shop=shop.shop,
            vehicle=vehicle or shop.vehicle,
            technician=shop.technician,
            workflow_state=state,
            version=version,
            **kwargs,
        )
        for condition in conditions:
            factories.create_item(db_session, inspection=inspection, condition=condition)
        db_session.commit()
        return inspection

    return _make
