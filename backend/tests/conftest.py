import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before `app` is first imported
_DB_DIR = Path(tempfile.mkdtemp(prefix="health-api-tests-"))
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from app.main import app  # noqa: E402
from app.database import engine, create_db_and_tables, drop_db_and_tables  # noqa: E402
from app import models, repositories  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def reset_db():
    """Ensure a fresh database for the test session."""
    drop_db_and_tables()
    create_db_and_tables()
    yield


@pytest.fixture
def api():
    return TestClient(app)


def unique_email(prefix="user"):
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


@pytest.fixture
def registered(api):
    """Register a fresh user; returns the `/auth/register` JSON body plus the password."""
    password = "s3cret-pass"
    r = api.post('/v1/auth/register', json={'name': 'Nurse Joy', 'email': unique_email(), 'password': password})
    assert r.status_code == 201
    body = r.json()
    body['password'] = password
    return body


@pytest.fixture
def auth_headers(registered):
    return {'Authorization': f"Bearer {registered['tokens']['access']['token']}"}


@pytest.fixture
def admin_headers(api):
    r = api.post('/v1/auth/register', json={'name': 'Admin', 'email': unique_email("admin"), 'password': 'adm1n-pass'})
    assert r.status_code == 201
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        user = repo.get(uuid.UUID(r.json()['user']['id']))
        repo.update(user, {'role': models.UserRole.ADMIN})
    # role is read from the database on each request, the issued token stays valid
    return {'Authorization': f"Bearer {r.json()['tokens']['access']['token']}"}
