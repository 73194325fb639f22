"""
Test Configuration and Fixtures
Shared testing infrastructure for the stock ledger
"""

import os

# Tests run against SQLite; set before the package reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from millstock.main import app
from millstock.api import deps
from millstock.core.database import get_db, Base
from millstock.models import KunchinittuRec, OutturnRec, VarietyRec, WarehouseRec
from millstock.services.ledger.admission import Actor, MovementAdmissionService
from millstock.services.ledger.events import MovementEvent, MovementKind, WarehouseLocation
from millstock.services.ledger.projection_cache import ProjectionCache

# Test database URL - in-memory SQLite shared across the session's connection
TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test"""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def cache() -> ProjectionCache:
    return ProjectionCache(ttl=30)


@pytest.fixture(scope="function")
def client(db_session: Session, cache: ProjectionCache) -> Generator[TestClient, None, None]:
    """Create a test client with database and cache overrides"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_cache] = lambda: cache
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def staff() -> Actor:
    return Actor(user_id=1, role="staff")


@pytest.fixture
def manager() -> Actor:
    return Actor(user_id=2, role="manager")


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=3, role="admin")


def actor_headers(actor: Actor) -> dict:
    return {"X-Actor-Id": str(actor.user_id), "X-Actor-Role": actor.role}


@pytest.fixture
def mill(db_session: Session) -> SimpleNamespace:
    """
    Two warehouses with four kunchinittus and two outturns.

    K2 is allotted to IR64 and K4 to Sona Masuri; K1 and K3 are open.
    """
    w1 = WarehouseRec(code="W1", name="Main Godown")
    w2 = WarehouseRec(code="W2", name="River Godown")
    ir64 = VarietyRec(name="IR64", code="IR")
    sona = VarietyRec(name="Sona Masuri", code="SM")
    db_session.add_all([w1, w2, ir64, sona])
    db_session.flush()

    k1 = KunchinittuRec(code="K1", name="Bay 1", warehouse_id=w1.warehouse_id)
    k2 = KunchinittuRec(code="K2", name="Bay 2", warehouse_id=w1.warehouse_id, variety_id=ir64.variety_id)
    k3 = KunchinittuRec(code="K3", name="Bay 3", warehouse_id=w2.warehouse_id)
    k4 = KunchinittuRec(code="K4", name="Bay 4", warehouse_id=w2.warehouse_id, variety_id=sona.variety_id)
    o1 = OutturnRec(code="OUT-1", allotted_variety="IR64", outturn_type="Raw")
    o2 = OutturnRec(code="OUT-2", allotted_variety="Sona Masuri", outturn_type="Steam")
    db_session.add_all([k1, k2, k3, k4, o1, o2])
    db_session.commit()

    return SimpleNamespace(
        w1=w1.warehouse_id,
        w2=w2.warehouse_id,
        k1_id=k1.kunchinittu_id,
        k2_id=k2.kunchinittu_id,
        k3_id=k3.kunchinittu_id,
        k4_id=k4.kunchinittu_id,
        k1=WarehouseLocation(k1.kunchinittu_id, w1.warehouse_id),
        k2=WarehouseLocation(k2.kunchinittu_id, w1.warehouse_id),
        k3=WarehouseLocation(k3.kunchinittu_id, w2.warehouse_id),
        k4=WarehouseLocation(k4.kunchinittu_id, w2.warehouse_id),
        o1=o1.outturn_id,
        o2=o2.outturn_id,
    )


def make_event(kind, bags, variety="IR64", event_date=date(2024, 1, 5), **fields) -> MovementEvent:
    """Movement with 75 kg bags unless a net weight is given"""
    fields.setdefault("net_weight", Decimal(bags * 75))
    return MovementEvent(
        kind=MovementKind(kind),
        event_date=event_date,
        variety=variety,
        bags=bags,
        **fields,
    )


@pytest.fixture
def admit(db_session: Session, admin: Actor):
    """Record movements as an admin so they are admitted at once"""
    service = MovementAdmissionService(db_session)

    def _admit(kind, bags, variety="IR64", event_date=date(2024, 1, 5), **fields) -> int:
        return service.admit_movement(make_event(kind, bags, variety, event_date, **fields), admin)

    return _admit
