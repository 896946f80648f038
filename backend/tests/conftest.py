import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from bracketry.database import get_session  # noqa: E402
from bracketry.main import app  # noqa: E402
from bracketry.models.registration import Registration  # noqa: E402
from bracketry.models.tournament import Tournament  # noqa: E402
from bracketry.services.repository import SqlBracketRepository  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models are registered by tests/__init__.py before create_all()
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables created and dropped per test, not relying on app startup
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema."""
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override MUST be set BEFORE TestClient() and stay in place
    for the entire duration. This ensures the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(name="repo")
def repo_fixture(session: Session) -> SqlBracketRepository:
    return SqlBracketRepository(session)


@pytest.fixture
def tournament(session: Session) -> Tournament:
    t = Tournament(name="Club Open")
    session.add(t)
    session.commit()
    session.refresh(t)
    return t


def add_entrants(session: Session, tournament_id: int, count: int, ratings=None, seeds=None, paid=True):
    """Register `count` entrants; optional per-entrant rating/seed lists."""
    ratings = ratings or [None] * count
    seeds = seeds or [None] * count
    regs = [
        Registration(
            tournament_id=tournament_id,
            name=f"Entrant {i + 1}",
            rating=ratings[i],
            seed=seeds[i],
            paid=paid,
        )
        for i in range(count)
    ]
    for reg in regs:
        session.add(reg)
    session.commit()
    for reg in regs:
        session.refresh(reg)
    return [reg.id for reg in regs]


@pytest.fixture
def make_entrants(session: Session):
    def _make(tournament_id: int, count: int, **kwargs):
        return add_entrants(session, tournament_id, count, **kwargs)

    return _make
