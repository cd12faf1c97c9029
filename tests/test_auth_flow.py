from app.stockflow.db.models import AuditEvent
from tests.stock_helpers import PASSWORD, auth_headers, create_user, seed_defaults


def test_login_with_email(client, db_session):
    create_user(db_session, suffix="jane")

    response = client.post(
        "/stockflow/auth/login",
        json={"email": "user-jane@example.com", "password": PASSWORD},
    )

    assert response.status_code == 200
    assert response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"


def test_login_with_username_is_audited(client, db_session):
    user = create_user(db_session, suffix="audited")

    response = client.post(
        "/stockflow/auth/login",
        json={"username_or_email": user.username, "password": PASSWORD},
    )

    assert response.status_code == 200
    events = db_session.query(AuditEvent).filter(AuditEvent.action == "auth.login").all()
    assert [event.entity_id for event in events] == [str(user.id)]


def test_login_invalid_password(client, db_session):
    user = create_user(db_session, suffix="wrong-pass")

    response = client.post(
        "/stockflow/auth/login",
        json={"username_or_email": user.username, "password": "wrong-pass"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"
    failures = db_session.query(AuditEvent).filter(AuditEvent.action == "auth.login.failed").all()
    assert len(failures) == 1


def test_login_unknown_user(client):
    response = client.post(
        "/stockflow/auth/login",
        json={"username_or_email": "nobody", "password": "whatever"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


def test_login_inactive_user(client, db_session):
    user = create_user(db_session, suffix="suspended", is_active=False)

    response = client.post(
        "/stockflow/auth/login",
        json={"username_or_email": user.username, "password": PASSWORD},
    )

    assert response.status_code == 403
    assert response.json()["code"] == "USER_INACTIVE"


def test_login_requires_an_identifier(client):
    response = client.post("/stockflow/auth/login", json={"password": PASSWORD})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_invalid_token_is_rejected(client, db_session):
    seed_defaults(db_session)

    response = client.get("/stockflow/warehouses", headers=auth_headers("not-a-token"))

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"
