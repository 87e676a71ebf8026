from datetime import timedelta

import pytest

from conftest import make_user
from pscheduler import models, schemas, security
from pscheduler.exceptions import InvalidCredentialsError, ResourceAlreadyExistsError
from pscheduler.services import AuthService


def _register_request(username="dave", email="dave@example.com", password="Secret123!"):
    return schemas.RegisterRequest(username=username, email=email, password=password)


def test_register_hashes_password_and_issues_token(db_session):
    resp = AuthService(db_session).register(_register_request())

    user = db_session.query(models.User).filter_by(username="dave").one()
    assert user.password != "Secret123!"
    assert security.verify_password("Secret123!", user.password)
    assert user.is_active is True
    assert user.role == models.Role.USER
    assert resp.type == "Bearer"
    assert resp.user_id == user.id
    assert security.decode_access_token(resp.token) == "dave"


def test_register_rejects_duplicates(db_session):
    service = AuthService(db_session)
    service.register(_register_request())

    with pytest.raises(ResourceAlreadyExistsError, match="Username already exists"):
        service.register(_register_request(email="other@example.com"))
    with pytest.raises(ResourceAlreadyExistsError, match="Email already exists"):
        service.register(_register_request(username="other"))


def test_login(db_session):
    make_user(db_session, "erin")
    service = AuthService(db_session)

    resp = service.login(schemas.LoginRequest(username="erin", password="Secret123!"))
    assert resp.username == "erin"

    with pytest.raises(InvalidCredentialsError):
        service.login(schemas.LoginRequest(username="erin", password="wrong"))
    with pytest.raises(InvalidCredentialsError):
        service.login(schemas.LoginRequest(username="nobody", password="Secret123!"))


def test_login_disabled_account(db_session):
    make_user(db_session, "frank", is_active=False)

    with pytest.raises(InvalidCredentialsError, match="disabled"):
        AuthService(db_session).login(schemas.LoginRequest(username="frank", password="Secret123!"))


def test_expired_token_is_rejected():
    token = security.create_access_token("alice", 1, expires_delta=timedelta(seconds=-1))

    with pytest.raises(InvalidCredentialsError):
        security.decode_access_token(token)


def test_register_and_login_api(client):
    reg = client.post("/api/v1/auth/register", json={
        "username": "gina", "email": "gina@example.com", "password": "Secret123!",
        "first_name": "Gina",
    })
    assert reg.status_code == 201

    dup = client.post("/api/v1/auth/register", json={
        "username": "gina", "email": "gina2@example.com", "password": "Secret123!",
    })
    assert dup.status_code == 409

    bad_email = client.post("/api/v1/auth/register", json={
        "username": "hank", "email": "not-an-email", "password": "Secret123!",
    })
    assert bad_email.status_code == 422

    login = client.post("/api/v1/auth/login", json={"username": "gina", "password": "Secret123!"})
    assert login.status_code == 200
    token = login.json()["token"]
    assert client.get("/api/v1/tasks", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    wrong = client.post("/api/v1/auth/login", json={"username": "gina", "password": "nope"})
    assert wrong.status_code == 401
