"""
Shared test fixtures — SQLite test database, test client, auth helpers,
and a seeded rate catalog.
"""

import os
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set JWT_SECRET before importing app modules
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

from precast import models
from precast.auth import create_access_token
from precast.database import Base, get_db
from precast.main import app
from precast.rate_catalog import RateCatalog


TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

CATALOG_START = date(2026, 1, 1)
PRICING_DATE = date(2026, 3, 15)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def db():
    """Direct database session for test setup/assertions."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    """Extra sessions for concurrency tests — each one is closed at teardown."""
    sessions = []

    def make():
        session = TestingSessionLocal()
        sessions.append(session)
        return session

    yield make
    for session in sessions:
        session.close()


@pytest.fixture
def auth_headers():
    """Bearer token carrying every permission."""
    token = create_access_token("tester", ["*"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def viewer_headers():
    """Bearer token that can only read budgets and rates."""
    token = create_access_token("viewer", ["budgets:view", "rates:view"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def seeded_catalog(db):
    """
    A small but complete catalog, all effective 2026-01-01 unless noted:
      - default formula (0.4 / 0.3 / 0.2 / 0.1)
      - indices Jan 2026 (all 100) and Mar 2026 (110 / 105 / 100 / 120)
        -> escalation factor Jan -> Mar = 1.075
      - freight bands [0,100) 5/6, [100,300) 8/10, [300,1000) 12/15
      - assembly band [0,500) 1000 / 2000 / 3000
      - piece prices VIGA-01 = 1000, COL-02 = 500, VIGA-01 in zone SUR = 1200
    """
    catalog = RateCatalog(db)
    catalog.ensure_default_formula()

    catalog.create_monthly_index(1, 2026, 100, 100, 100, 100, dollar_rate=1000)
    catalog.create_monthly_index(3, 2026, 110, 105, 100, 120, dollar_rate=1100)

    for km_from, km_to, under, over in [(0, 100, 5, 6), (100, 300, 8, 10), (300, 1000, 12, 15)]:
        catalog.create_freight_rate(km_from, km_to, under, over, effective_date=CATALOG_START)

    catalog.create_assembly_rate(0, 500, 1000, 2000, 3000, effective_date=CATALOG_START)

    db.add_all([
        models.PiecePrice(piece_id="VIGA-01", unit_cost=1000.0, effective_date=CATALOG_START),
        models.PiecePrice(piece_id="COL-02", unit_cost=500.0, effective_date=CATALOG_START),
        models.PiecePrice(piece_id="VIGA-01", zone="SUR", unit_cost=1200.0, effective_date=CATALOG_START),
    ])
    db.commit()
    return catalog


@pytest.fixture
def priced_budget(db, seeded_catalog):
    """
    Draft budget 250 km away with two beams (5 t, 10 m) and four columns (2 t, 6 m).

    Expected at PRICING_DATE: lines 2150 + 2150, assembly 1000, one standard
    truck at 8 -> grand total 5308.
    """
    budget = models.Budget(
        is_draft=True,
        status=models.BudgetStatus.DRAFT.value,
        resume_token="fixture-token",
        draft_step=1,
        completed_steps=[],
        draft_data={},
        distance_km=250.0,
        origin_plant="PLANTA-NORTE",
        destination="Rosario",
    )
    budget.items = [
        models.BudgetItem(piece_id="VIGA-01", quantity=2, unit_weight_tons=5.0, length_m=10.0),
        models.BudgetItem(piece_id="COL-02", quantity=4, unit_weight_tons=2.0, length_m=6.0),
    ]
    db.add(budget)
    db.commit()
    db.refresh(budget)
    return budget
