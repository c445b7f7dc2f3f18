import os, tempfile

# cheap hashes for the whole run; read when config is first imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from main import app
from db import Base, get_db
from ai_client import get_ai_client
from errors import AIServiceError
from security import verify_admin
from store import FallbackStore, LocalJsonStore, Repository, SqlDocumentStore, get_local_store
from survey_schema import questions_for

@pytest.fixture(scope="session")
def tmp_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return path

@pytest.fixture(scope="session")
def test_engine(tmp_db_path):
    url = f"sqlite:///{tmp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False})

    # SQLite force foreign key constraints
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    return engine

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture(scope="session", autouse=True)
def override_di(TestingSessionLocal):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[verify_admin] = lambda: None

@pytest.fixture(autouse=True)
def clean_tables(test_engine):
    yield
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())

@pytest.fixture
def local_store(tmp_path):
    store = LocalJsonStore(str(tmp_path / "local_store.json"))
    app.dependency_overrides[get_local_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_local_store, None)

@pytest.fixture
def db_session(TestingSessionLocal):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def repo(db_session, local_store):
    return Repository(FallbackStore(SqlDocumentStore(db_session), local_store), local=local_store)


class FakeAI:
    """Stands in for AIClient: canned replies, or a scripted AIServiceError."""

    def __init__(self):
        self.calls = []
        self.error = None
        self.failures_left = None
        self.reply = "Respuesta simulada"

    def generate(self, messages):
        self.calls.append(messages)
        if self.error is not None and self.failures_left != 0:
            if self.failures_left is not None:
                self.failures_left -= 1
            raise self.error
        return self.reply

    def fail_with(self, error: AIServiceError, times=None):
        """Raise `error` on the next `times` calls, or on every call when `times` is None."""
        self.error = error
        self.failures_left = times

@pytest.fixture
def fake_ai():
    ai = FakeAI()
    app.dependency_overrides[get_ai_client] = lambda: ai
    yield ai
    app.dependency_overrides.pop(get_ai_client, None)

@pytest.fixture
def client(local_store, fake_ai):
    return TestClient(app)

@pytest.fixture
def admin_headers(client):
    # built-in account for CSA123, provisioned on first login
    r = client.post("/admin/login", json={"email": "ssotod@udd.cl", "password": "0702977"})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}

@pytest.fixture
def full_answers():
    """Every question answered with its first option (guards on "Sí" therefore open)."""
    def _answers(role):
        return {q.field: q.options[0] for q in questions_for(role)}
    return _answers
