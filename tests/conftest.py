import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from data.database import Base, get_db
from main import app
from services.cache import get_cache_client, get_local_cache_client
from config import config
import uuid

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
config.valid_tokens = ["fake-client-token"]

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

AUTH_HEADERS = {"Authorization": "Bearer fake-client-token"}


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

# One cache per test run, so status changes must invalidate it like the real backend
_test_cache_client = get_local_cache_client()

def override_get_cache_client():
    return _test_cache_client

app.dependency_overrides[get_cache_client] = override_get_cache_client


@pytest.fixture(autouse=True, scope="session")
def setup_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def cache_client():
    return _test_cache_client


@pytest.fixture
def organization_id():
    return f"org-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def auth_headers():
    return AUTH_HEADERS


def ab_test_payload(organization_id: str, **overrides) -> dict:
    payload = {
        "organization_id": organization_id,
        "name": "Pricing page headline",
        "description": "Benefit-led vs feature-led headline",
        "hypothesis": "A benefit-led headline lifts trial signups",
        "target_metric": "signup_rate",
        "variants": [
            {"id": "A", "name": "Control", "config": {"headline": "All-in-one analytics"}},
            {"id": "B", "name": "Benefit", "config": {"headline": "Ship decisions faster"}}
        ],
        "traffic_split": {"A": 50, "B": 50},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def draft_test(client, organization_id, auth_headers):
    response = client.post("/ab-tests", json=ab_test_payload(organization_id), headers=auth_headers)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def running_test(client, draft_test, auth_headers):
    response = client.post(f"/ab-tests/{draft_test['id']}/start", headers=auth_headers)
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def make_payload():
    return ab_test_payload


@pytest.fixture
def worker_db(monkeypatch):
    """Points celery tasks at the test database."""
    monkeypatch.setattr("celery_tasks.ab_test_tasks.SessionLocal", TestingSessionLocal)
    return TestingSessionLocal
