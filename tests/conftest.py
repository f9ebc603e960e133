import os
import tempfile

os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "textile_api_test_logs"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db
from deps.auth import create_access_token
from main import app
from services.audit import AuditWriter, Caller, ChangeRecorder, get_recorder
from utils.cache import TTLCache, get_read_cache

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def writer(session_factory):
    # not started: entries are written inline, so tests can read them right away
    return AuditWriter(session_factory=session_factory)


@pytest.fixture
def recorder(writer):
    return ChangeRecorder(writer)


@pytest.fixture
def cache():
    return TTLCache(ttl_seconds=60)


@pytest.fixture
def caller():
    return Caller(id="7", username="alice", role="user", ip_address="10.0.0.5", user_agent="pytest")


@pytest.fixture
def client(recorder, cache):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_recorder] = lambda: recorder
    app.dependency_overrides[get_read_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    token = create_access_token({"sub": "7", "username": "alice", "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_auth():
    token = create_access_token({"sub": "1", "username": "root", "role": "superadmin"})
    return {"Authorization": f"Bearer {token}"}


# ---------- builders ----------

@pytest.fixture
def make_party(client, auth):
    def _make(name="Shree Textiles"):
        r = client.post("/api/v1/parties", json={"name": name}, headers=auth)
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def make_quality(client, auth):
    def _make(name="Cotton 60s"):
        r = client.post("/api/v1/qualities", json={"name": name}, headers=auth)
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def make_mill(client, auth):
    def _make(name="Arvind Mills"):
        r = client.post("/api/v1/mills", json={"name": name}, headers=auth)
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def make_order(client, auth, make_party):
    def _make(party_id=None, items=None, **fields):
        if party_id is None:
            party_id = make_party()["id"]
        body = {
            "order_type": "Dying",
            "arrival_date": "2026-10-01",
            "party_id": party_id,
            "items": items or [{"quantity": 100, "description": "Navy"}],
        }
        body.update(fields)
        r = client.post("/api/v1/orders", json=body, headers=auth)
        assert r.status_code == 201, r.text
        return r.json()
    return _make
