import os

os.environ.setdefault("TOKEN_SECRET", "test-secret")
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from security import issue_token


@pytest.fixture
def db():
    database = mongomock.MongoClient()["fit-track-test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(email, role):
    return {"Authorization": f"Bearer {issue_token({'email': email, 'role': role})}"}


@pytest.fixture
def member_headers():
    return bearer("member@fit.com", "member")


@pytest.fixture
def trainer_headers():
    return bearer("coach@fit.com", "trainer")


@pytest.fixture
def admin_headers():
    return bearer("admin@fit.com", "admin")
