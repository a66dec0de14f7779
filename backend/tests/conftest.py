from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from app.database import build_engine, get_session, init_db
from app.main import app

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# CRITICAL: Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. build_engine sets check_same_thread=False for TestClient/threaded access
# 3. init_db(test_engine) registers every model before create_all
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables created per test and dropped afterwards
test_engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool, echo=False)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema"""
    init_db(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    CRITICAL: Override MUST be set BEFORE TestClient() and stay in place
    for the entire duration. This ensures the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(name="dual_meet")
def dual_meet_fixture(session: Session):
    """
    Two teams, four athletes each, weights interleaved 50..57.

    Hawks (home): 50, 52, 54, 56    Bears: 51, 53, 55, 57
    Same birthdate and experience, so only weight separates them.
    """
    from app.models import Athlete, Meet, MeetTeam, Team

    hawks = Team(name="Hawks", symbol="HWK", prefer_same_mat=False)
    bears = Team(name="Bears", symbol="BRS")
    session.add(hawks)
    session.add(bears)
    session.flush()

    meet = Meet(name="Dual", date=date(2024, 1, 13), num_mats=2, rest_gap=2, home_team_id=hawks.id)
    session.add(meet)
    session.flush()
    session.add(MeetTeam(meet_id=meet.id, team_id=hawks.id))
    session.add(MeetTeam(meet_id=meet.id, team_id=bears.id))

    athletes = {}
    for weight in range(50, 58):
        team = hawks if weight % 2 == 0 else bears
        athlete = Athlete(
            team_id=team.id,
            first=f"W{weight}",
            last=team.name,
            weight=float(weight),
            birthdate=date(2014, 5, 1),
            experience_years=2,
            skill=3,
        )
        session.add(athlete)
        session.flush()
        athletes[weight] = athlete.id

    session.commit()
    return {"meet_id": meet.id, "hawks_id": hawks.id, "bears_id": bears.id, "athletes": athletes}
