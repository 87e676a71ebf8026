import os
from datetime import timedelta

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_pscheduler.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pscheduler import models, schemas, security
from pscheduler.database import Base, get_db
from pscheduler.events import CompletionPublisher
from pscheduler.main import app, get_publisher
from pscheduler.services import TaskService

# ============================================================
# SQLite database shared by service and API tests
# ============================================================

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_tasks.db"

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture(autouse=True)
def clean_db():
    """Recreate the schema before every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def events():
    """Completion events published during the test, in order."""
    received = []
    app.dependency_overrides[get_publisher] = lambda: CompletionPublisher([received.append])
    yield received
    app.dependency_overrides.pop(get_publisher, None)


@pytest.fixture
def service(db_session, events):
    return TaskService(db_session, CompletionPublisher([events.append]))


@pytest.fixture
def client(events):
    return TestClient(app)


@pytest.fixture
def alice(db_session):
    return make_user(db_session, "alice")


@pytest.fixture
def bob(db_session):
    return make_user(db_session, "bob")


# ============================================================
# HELPERS
# ============================================================

def make_user(db, username, password="Secret123!", is_active=True):
    user = models.User(
        username=username,
        email=f"{username}@example.com",
        password=security.hash_password(password),
        is_active=is_active,
        role=models.Role.USER,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def build_task_create(title="Test Task", description="Test description",
                      deadline=None, priority=None, tags=None):
    return schemas.TaskCreate(
        title=title,
        description=description,
        deadline=deadline or models.utcnow() + timedelta(days=1),
        priority=priority,
        tags=tags,
    )


def auth_headers(client, username="alice", password="Secret123!"):
    resp = client.post("/api/v1/auth/register", json={
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
    })
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}
